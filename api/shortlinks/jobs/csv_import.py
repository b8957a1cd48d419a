from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from functools import lru_cache

from opentelemetry import trace
from redis.asyncio import Redis

from shortlinks.core.config import Settings, get_settings
from shortlinks.jobs.csv_rows import MappedRow, RowWindow, iter_csv_rows, map_csv_row
from shortlinks.jobs.link_materializer import materialize_links
from shortlinks.schemas.imports import CsvImportPayload
from shortlinks.services.cursor_store import CursorStore, get_redis
from shortlinks.services.hosting import VercelClient, get_hosting
from shortlinks.services.links import LinkProcessor, get_link_processor
from shortlinks.services.notifications import CsvImportSummary, EmailNotifier, get_notifier
from shortlinks.services.queue import QStashClient, get_queue
from shortlinks.services.repository import PostgresRepository, get_repository
from shortlinks.services.storage import ObjectStorage, get_storage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_ROWS_PER_EXECUTION = 25
CSV_IMPORT_PATH = "/api/cron/import/csv"


@dataclass(slots=True)
class BatchOutcome:
    start_cursor: int
    end_cursor: int
    processed: int
    is_complete: bool
    mapped: int = 0
    failed: int = 0
    created: int = 0
    rescheduled: bool = False


class CsvImportRunner:
    """Runs one invocation of a CSV import job and decides whether another is needed."""

    def __init__(
        self,
        *,
        storage: ObjectStorage,
        redis: Redis,
        repository: PostgresRepository,
        queue: QStashClient,
        hosting: VercelClient,
        notifier: EmailNotifier,
        link_processor: LinkProcessor,
        app_domain: str,
        platform_domains: list[str] | set[str],
        max_rows_per_execution: int = MAX_ROWS_PER_EXECUTION,
    ) -> None:
        self.storage = storage
        self.redis = redis
        self.repository = repository
        self.queue = queue
        self.hosting = hosting
        self.notifier = notifier
        self.link_processor = link_processor
        self.app_domain = app_domain.rstrip("/")
        self.platform_domains = {domain.lower() for domain in platform_domains}
        self.max_rows_per_execution = max(1, max_rows_per_execution)

    @property
    def continuation_url(self) -> str:
        return f"{self.app_domain}{CSV_IMPORT_PATH}"

    def cursor_store(self, payload: CsvImportPayload) -> CursorStore:
        return CursorStore(self.redis, workspace_id=payload.workspace_id, job_id=payload.id)

    async def run(self, payload: CsvImportPayload) -> BatchOutcome:
        with tracer.start_as_current_span("csv_import.invocation") as span:
            span.set_attribute("csv_import.id", payload.id)
            span.set_attribute("csv_import.workspace_id", payload.workspace_id)
            outcome = await self.process_batch(payload)
            outcome.rescheduled = await self.reschedule_or_finalize(payload, outcome)
            span.set_attribute("csv_import.processed", outcome.processed)
            span.set_attribute("csv_import.is_complete", outcome.is_complete)
            return outcome

    async def process_batch(self, payload: CsvImportPayload) -> BatchOutcome:
        """Map and materialize the next slice of rows after the stored cursor.

        The cursor is written after every mapped row, before the next row is
        read. Storage and CSV parse errors propagate; row errors are recorded.
        """
        store = self.cursor_store(payload)
        cursor = await store.get_cursor()
        window = RowWindow(start=cursor, limit=self.max_rows_per_execution)
        mapped_rows: list[MappedRow] = []

        async with aclosing(self.storage.stream_lines(payload.url)) as lines:
            async for index, row in window.rows(iter_csv_rows(lines)):
                mapped_rows.append(map_csv_row(row, payload.mapping))
                await store.set_cursor(index + 1)

        failures = [row.to_error_link() for row in mapped_rows if not row.success]
        if failures:
            logger.info("csv import id=%s rows failed mapping: %s", payload.id, len(failures))
            await store.append_failed(failures)

        intents = [row.data for row in mapped_rows if row.success and row.data is not None]
        result = await materialize_links(
            intents,
            payload=payload,
            repository=self.repository,
            cursor_store=store,
            hosting=self.hosting,
            link_processor=self.link_processor,
            platform_domains=self.platform_domains,
        )

        outcome = BatchOutcome(
            start_cursor=cursor,
            end_cursor=cursor + window.taken,
            processed=window.taken,
            is_complete=window.is_complete,
            mapped=len(intents),
            failed=len(failures) + len(result.error_links),
            created=result.created,
        )
        logger.info(
            "csv import id=%s processed rows %s-%s complete=%s",
            payload.id,
            outcome.start_cursor,
            outcome.end_cursor,
            outcome.is_complete,
        )
        return outcome

    async def reschedule_or_finalize(self, payload: CsvImportPayload, outcome: BatchOutcome) -> bool:
        """Enqueue the next invocation when rows remain; otherwise finalize. Returns True if rescheduled."""
        if outcome.processed >= self.max_rows_per_execution and not outcome.is_complete:
            await self.queue.publish_json(url=self.continuation_url, body=payload.to_message())
            logger.info("csv import id=%s continues from row %s", payload.id, outcome.end_cursor)
            return True

        await self.finalize(payload)
        return False

    async def finalize(self, payload: CsvImportPayload) -> CsvImportSummary:
        store = self.cursor_store(payload)
        summary = CsvImportSummary(
            workspace_id=payload.workspace_id,
            count=await store.get_created(),
            domains=await store.list_domains(),
            error_links=await store.list_failed(),
        )
        logger.info(
            "csv import id=%s finished created=%s domains=%s failed=%s",
            payload.id,
            summary.count,
            len(summary.domains),
            len(summary.error_links),
        )
        await self.notifier.send_csv_import_summary(summary)

        cleared, deleted = await asyncio.gather(
            store.clear(),
            self.storage.delete(payload.url),
            return_exceptions=True,
        )
        failures: list[tuple[str, BaseException]] = []
        if isinstance(cleared, BaseException):
            failures.append(("cursor state", cleared))
        else:
            failures.extend((key, error) for key, error in zip(store.keys, cleared) if error is not None)
        if isinstance(deleted, BaseException):
            failures.append((payload.url, deleted))
        for target, error in failures:
            logger.error("error clearing csv import data id=%s target=%s: %s", payload.id, target, error)
        return summary


def build_csv_import_runner(settings: Settings) -> CsvImportRunner:
    return CsvImportRunner(
        storage=get_storage(),
        redis=get_redis(),
        repository=get_repository(),
        queue=get_queue(),
        hosting=get_hosting(),
        notifier=get_notifier(),
        link_processor=get_link_processor(),
        app_domain=settings.app_domain,
        platform_domains=settings.platform_domains,
        max_rows_per_execution=settings.csv_import_max_rows_per_execution,
    )


@lru_cache
def get_csv_import_runner() -> CsvImportRunner:
    return build_csv_import_runner(get_settings())
