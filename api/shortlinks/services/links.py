from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache

from shortlinks.core.config import get_settings
from shortlinks.core.links import MAX_KEY_LENGTH, MAX_URL_LENGTH, ROOT_KEY, is_valid_url, short_link
from shortlinks.services.repository import (
    LinkRecord,
    PostgresRepository,
    WorkspaceRecord,
    create_id,
    get_repository,
)

MAX_TITLE_LENGTH = 120
MAX_DESCRIPTION_LENGTH = 240
RESERVED_KEYS = {
    "about",
    "admin",
    "api",
    "app",
    "blog",
    "careers",
    "changelog",
    "dashboard",
    "docs",
    "help",
    "home",
    "login",
    "pricing",
    "register",
    "settings",
    "signin",
    "signup",
    "stats",
}


@dataclass(slots=True)
class LinkIntent:
    """A CSV row that passed mapping and is ready for link validation."""

    domain: str
    key: str
    url: str
    title: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    created_at: datetime | None = None

    @property
    def short_link(self) -> str:
        return short_link(self.domain, self.key)


@dataclass(slots=True)
class ProcessedLink:
    link: LinkRecord
    error: str | None = None
    code: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class LinkProcessor:
    repository: PostgresRepository
    platform_domains: set[str] = field(default_factory=set)

    async def process_link(
        self,
        intent: LinkIntent,
        *,
        workspace: WorkspaceRecord,
        user_id: str | None,
        folder_id: str | None = None,
        bulk: bool = False,
    ) -> ProcessedLink:
        """Validate a link-creation request and build the record to insert.

        With ``bulk=True`` the per-link uniqueness lookup is skipped; bulk
        callers are expected to have filtered existing short links already.
        """
        link = LinkRecord(
            id=create_id("link_"),
            workspace_id=workspace.id,
            user_id=user_id,
            domain=intent.domain,
            key=intent.key,
            url=intent.url.strip(),
            short_link=intent.short_link,
            folder_id=folder_id,
            title=_truncate(intent.title, MAX_TITLE_LENGTH),
            description=_truncate(intent.description, MAX_DESCRIPTION_LENGTH),
            tag_names=list(intent.tags or []),
            created_at=intent.created_at,
        )

        if not link.url:
            return ProcessedLink(link=link, error="Missing destination url.", code="bad_request")
        if len(link.url) > MAX_URL_LENGTH:
            return ProcessedLink(link=link, error="Destination URL is too long.", code="unprocessable_entity")
        if not is_valid_url(link.url):
            return ProcessedLink(link=link, error="Invalid destination URL", code="unprocessable_entity")

        if not link.domain:
            return ProcessedLink(link=link, error="Missing short link domain.", code="bad_request")

        error = self._validate_key(link.domain, link.key)
        if error:
            return ProcessedLink(link=link, error=error, code="unprocessable_entity")

        if folder_id and workspace.plan == "free":
            return ProcessedLink(
                link=link,
                error="Folders are not available on the free plan.",
                code="forbidden",
            )

        if not bulk and await self.repository.short_link_exists(link.domain, link.key):
            return ProcessedLink(link=link, error="Duplicate key: this short link already exists.", code="conflict")

        return ProcessedLink(link=link)

    def _validate_key(self, domain: str, key: str) -> str | None:
        if len(key) > MAX_KEY_LENGTH:
            return f"Key too long: must be at most {MAX_KEY_LENGTH} characters."
        if any(char.isspace() for char in key):
            return "Invalid key: short link keys cannot contain whitespace."
        if key.startswith("/") or key.endswith("/"):
            return "Invalid key: short link keys cannot start or end with a slash."
        if domain in self.platform_domains:
            if key == ROOT_KEY:
                return f"You can't set a root link for {domain}."
            if key.lower() in RESERVED_KEYS:
                return f"Invalid key: {key} is reserved on {domain}."
        return None


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit]


@lru_cache
def get_link_processor() -> LinkProcessor:
    settings = get_settings()
    return LinkProcessor(
        repository=get_repository(),
        platform_domains={domain.lower() for domain in settings.platform_domains},
    )
