from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field

from shortlinks.core.links import ROOT_KEY, short_link
from shortlinks.schemas.imports import CsvImportPayload
from shortlinks.services.cursor_store import CursorStore, ErrorLink
from shortlinks.services.hosting import VercelClient
from shortlinks.services.links import LinkIntent, LinkProcessor
from shortlinks.services.repository import LinkRecord, PostgresRepository, create_id

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MaterializeResult:
    created: int = 0
    skipped_existing: int = 0
    error_links: list[ErrorLink] = field(default_factory=list)
    created_tags: list[str] = field(default_factory=list)
    created_domains: list[str] = field(default_factory=list)


async def materialize_links(
    intents: list[LinkIntent],
    *,
    payload: CsvImportPayload,
    repository: PostgresRepository,
    cursor_store: CursorStore,
    hosting: VercelClient,
    link_processor: LinkProcessor,
    platform_domains: set[str],
) -> MaterializeResult:
    """Create links for one batch of mapped rows.

    Safe to run again over rows that were already imported: short links that
    already exist are skipped, so redelivered queue messages never create
    duplicates.
    """
    result = MaterializeResult()
    if not intents:
        logger.info("no links to process for csv import id=%s", payload.id)
        return result

    result.created_tags = await _ensure_tags(intents, payload=payload, repository=repository)

    requested_domains = _unique(intent.domain for intent in intents if intent.domain)
    result.created_domains = await _ensure_domains(
        requested_domains,
        payload=payload,
        repository=repository,
        hosting=hosting,
        platform_domains=platform_domains,
    )
    await cursor_store.add_domains(requested_domains)

    candidates = await _drop_existing(intents, payload=payload, repository=repository)
    result.skipped_existing = len(intents) - len(candidates)

    workspace = await repository.get_workspace(payload.workspace_id)
    processed = [
        await link_processor.process_link(
            intent,
            workspace=workspace,
            user_id=payload.user_id,
            folder_id=payload.folder_id,
            bulk=True,
        )
        for intent in candidates
    ]

    valid_links = [item.link for item in processed if item.ok]
    result.error_links = [
        ErrorLink(domain=item.link.domain, key=item.link.key, error=item.error or "")
        for item in processed
        if not item.ok
    ]

    if valid_links:
        result.created = await repository.create_links(valid_links)
        await cursor_store.increment_created(result.created)
    if result.error_links:
        await cursor_store.append_failed(result.error_links)

    logger.info(
        "materialized csv import batch id=%s created=%s skipped_existing=%s failed=%s",
        payload.id,
        result.created,
        result.skipped_existing,
        len(result.error_links),
    )
    return result


async def _ensure_tags(
    intents: list[LinkIntent],
    *,
    payload: CsvImportPayload,
    repository: PostgresRepository,
) -> list[str]:
    requested = [tag for intent in intents for tag in (intent.tags or []) if tag]
    if not requested:
        return []

    existing = {name.lower() for name in await repository.list_tag_names(payload.workspace_id)}
    missing: list[str] = []
    for tag in requested:
        if tag.lower() in existing:
            continue
        existing.add(tag.lower())
        missing.append(tag)

    if missing:
        await repository.create_tags(payload.workspace_id, missing)
    return missing


async def _ensure_domains(
    requested: list[str],
    *,
    payload: CsvImportPayload,
    repository: PostgresRepository,
    hosting: VercelClient,
    platform_domains: set[str],
) -> list[str]:
    if not requested:
        return []

    existing = set(await repository.list_domain_slugs(payload.workspace_id))
    missing = [domain for domain in requested if domain not in existing and domain not in platform_domains]
    if not missing:
        return []

    tasks: list[tuple[str, Awaitable[object]]] = [
        ("create domains", repository.create_domains(payload.workspace_id, missing)),
    ]
    tasks.extend((f"register {domain}", hosting.add_domain(domain)) for domain in missing)
    tasks.append(
        (
            "create root links",
            repository.create_links([_root_link(domain, payload=payload) for domain in missing]),
        )
    )

    # registration is best-effort: rows on an unregistered domain are still imported
    results = await asyncio.gather(*(task for _, task in tasks), return_exceptions=True)
    for (label, _), outcome in zip(tasks, results):
        if isinstance(outcome, BaseException):
            logger.warning("csv import id=%s failed to %s: %s", payload.id, label, outcome)
    return missing


async def _drop_existing(
    intents: list[LinkIntent],
    *,
    payload: CsvImportPayload,
    repository: PostgresRepository,
) -> list[LinkIntent]:
    existing = await repository.find_existing_short_links(
        payload.workspace_id,
        _unique(intent.short_link for intent in intents),
    )
    candidates: list[LinkIntent] = []
    seen: set[str] = set()
    for intent in intents:
        link = intent.short_link
        if link in existing or link in seen:
            continue
        seen.add(link)
        candidates.append(intent)
    return candidates


def _root_link(domain: str, *, payload: CsvImportPayload) -> LinkRecord:
    return LinkRecord(
        id=create_id("link_"),
        workspace_id=payload.workspace_id,
        user_id=payload.user_id,
        domain=domain,
        key=ROOT_KEY,
        url="",
        short_link=short_link(domain, ROOT_KEY),
    )


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))
