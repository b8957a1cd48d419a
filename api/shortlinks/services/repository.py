from __future__ import annotations

import json
import random
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any
from uuid import uuid4

import asyncpg  # type: ignore[import-untyped]

from shortlinks.core.config import get_settings

TAG_COLORS = ("red", "yellow", "green", "blue", "purple", "brown", "pink")


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


@dataclass(slots=True)
class WorkspaceRecord:
    id: str
    plan: str


@dataclass(slots=True)
class LinkRecord:
    id: str
    workspace_id: str
    user_id: str | None
    domain: str
    key: str
    url: str
    short_link: str
    folder_id: str | None = None
    title: str | None = None
    description: str | None = None
    tag_names: list[str] = field(default_factory=list)
    created_at: datetime | None = None


@dataclass(slots=True)
class LinkTestSchedule:
    id: str
    test_variants: list[dict[str, Any]] | None
    test_completed_at: datetime | None


def create_id(prefix: str) -> str:
    return f"{prefix}{uuid4().hex}"


def random_badge_color() -> str:
    return random.choice(TAG_COLORS)


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_workspace(self, workspace_id: str) -> WorkspaceRecord:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select id, plan
            from workspaces
            where id = $1
            """,
            workspace_id,
        )
        if not row:
            raise RepositoryNotFoundError(f"workspace not found: {workspace_id}")
        return WorkspaceRecord(id=row["id"], plan=row["plan"] or "free")

    async def list_workspace_owner_emails(self, workspace_id: str) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select u.email
            from workspace_users wu
            join users u on u.id = wu.user_id
            where wu.workspace_id = $1
              and wu.role = 'owner'
              and u.email is not null
            order by u.email
            """,
            workspace_id,
        )
        return [row["email"] for row in rows]

    async def list_tag_names(self, workspace_id: str) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch("select name from tags where workspace_id = $1", workspace_id)
        return [row["name"] for row in rows]

    async def create_tags(self, workspace_id: str, names: list[str]) -> int:
        """Insert missing tags; names created concurrently by another invocation are skipped."""
        if not names:
            return 0
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            insert into tags (id, workspace_id, name, color)
            select t.id, $1, t.name, t.color
            from unnest($2::text[], $3::text[], $4::text[]) as t(id, name, color)
            on conflict (workspace_id, name) do nothing
            returning id
            """,
            workspace_id,
            [create_id("tag_") for _ in names],
            names,
            [random_badge_color() for _ in names],
        )
        return len(rows)

    async def list_domain_slugs(self, workspace_id: str) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch("select slug from domains where workspace_id = $1", workspace_id)
        return [row["slug"] for row in rows]

    async def create_domains(self, workspace_id: str, slugs: list[str]) -> int:
        if not slugs:
            return 0
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            insert into domains (id, workspace_id, slug, is_primary)
            select d.id, $1, d.slug, false
            from unnest($2::text[], $3::text[]) as d(id, slug)
            on conflict (slug) do nothing
            returning id
            """,
            workspace_id,
            [create_id("dom_") for _ in slugs],
            slugs,
        )
        return len(rows)

    async def find_existing_short_links(self, workspace_id: str, short_links: list[str]) -> set[str]:
        if not short_links:
            return set()
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select short_link
            from links
            where workspace_id = $1
              and short_link = any($2::text[])
            """,
            workspace_id,
            short_links,
        )
        return {row["short_link"] for row in rows}

    async def short_link_exists(self, domain: str, key: str) -> bool:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            "select 1 from links where domain = $1 and key = $2",
            domain,
            key,
        )
        return row is not None

    async def create_links(self, links: list[LinkRecord]) -> int:
        """Bulk insert links and their tag assignments; returns how many links were inserted.

        ``(domain, key)`` is unique, so a link inserted concurrently by a duplicate
        invocation is skipped rather than failing the batch.
        """
        if not links:
            return 0
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                inserted = await conn.fetch(
                    """
                    insert into links (
                      id, workspace_id, user_id, folder_id, domain, key, url,
                      short_link, title, description, created_at
                    )
                    select
                      l.id, l.workspace_id, l.user_id, l.folder_id, l.domain, l.key, l.url,
                      l.short_link, l.title, l.description, coalesce(l.created_at, now())
                    from unnest(
                      $1::text[], $2::text[], $3::text[], $4::text[], $5::text[], $6::text[],
                      $7::text[], $8::text[], $9::text[], $10::text[], $11::timestamptz[]
                    ) as l(
                      id, workspace_id, user_id, folder_id, domain, key, url,
                      short_link, title, description, created_at
                    )
                    on conflict (domain, key) do nothing
                    returning id
                    """,
                    [link.id for link in links],
                    [link.workspace_id for link in links],
                    [link.user_id for link in links],
                    [link.folder_id for link in links],
                    [link.domain for link in links],
                    [link.key for link in links],
                    [link.url for link in links],
                    [link.short_link for link in links],
                    [link.title for link in links],
                    [link.description for link in links],
                    [link.created_at for link in links],
                )
                inserted_ids = {row["id"] for row in inserted}

                tag_pairs = [
                    (link.id, link.workspace_id, name)
                    for link in links
                    if link.id in inserted_ids
                    for name in link.tag_names
                ]
                if tag_pairs:
                    await conn.execute(
                        """
                        insert into link_tags (link_id, tag_id)
                        select p.link_id, t.id
                        from unnest($1::text[], $2::text[], $3::text[]) as p(link_id, workspace_id, name)
                        join tags t
                          on t.workspace_id = p.workspace_id
                         and lower(t.name) = lower(p.name)
                        on conflict do nothing
                        """,
                        [pair[0] for pair in tag_pairs],
                        [pair[1] for pair in tag_pairs],
                        [pair[2] for pair in tag_pairs],
                    )
        return len(inserted_ids)

    async def update_link_tests(
        self,
        *,
        link_id: str,
        test_variants: list[dict[str, Any]] | None,
        test_completed_at: datetime | None,
    ) -> LinkTestSchedule:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            update links
            set test_variants = $2::jsonb,
                test_completed_at = $3
            where id = $1
            returning id, test_variants, test_completed_at
            """,
            link_id,
            json.dumps(test_variants) if test_variants is not None else None,
            test_completed_at,
        )
        if not row:
            raise RepositoryNotFoundError(f"link not found: {link_id}")
        return LinkTestSchedule(
            id=row["id"],
            test_variants=self._coerce_json_list(row["test_variants"]),
            test_completed_at=row["test_completed_at"],
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("SL_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _coerce_json_list(value: Any) -> list[dict[str, Any]] | None:
        if value is None:
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return None
        if not isinstance(value, list):
            return None
        return [item for item in value if isinstance(item, dict)]


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
