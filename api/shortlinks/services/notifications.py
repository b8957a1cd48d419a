from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache

import httpx

from shortlinks.core.config import get_settings
from shortlinks.core.http import http_session
from shortlinks.services.cursor_store import ErrorLink
from shortlinks.services.repository import PostgresRepository, get_repository

logger = logging.getLogger(__name__)

MAX_ERROR_LINES = 50


@dataclass(slots=True)
class CsvImportSummary:
    workspace_id: str
    count: int
    domains: list[str] = field(default_factory=list)
    error_links: list[ErrorLink] = field(default_factory=list)


def render_csv_import_email(summary: CsvImportSummary) -> tuple[str, str]:
    """Build the subject and plain-text body of the import summary email."""
    noun = "link" if summary.count == 1 else "links"
    subject = f"Your CSV links have been imported ({summary.count} {noun})"
    lines = [f"{summary.count} {noun} were imported into your workspace."]
    if summary.domains:
        lines.append("")
        lines.append(f"Domains: {', '.join(summary.domains)}")
    if summary.error_links:
        lines.append("")
        lines.append(f"{len(summary.error_links)} rows could not be imported:")
        for error_link in summary.error_links[:MAX_ERROR_LINES]:
            target = "/".join(part for part in (error_link.domain, error_link.key) if part) or "(unknown link)"
            lines.append(f"- {target}: {error_link.error}")
        remaining = len(summary.error_links) - MAX_ERROR_LINES
        if remaining > 0:
            lines.append(f"...and {remaining} more")
    return subject, "\n".join(lines)


class EmailNotifier:
    def __init__(
        self,
        repository: PostgresRepository,
        *,
        api_url: str,
        api_key: str | None,
        sender: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.sender = sender
        self.timeout_seconds = timeout_seconds
        self.client = client

    async def send_csv_import_summary(self, summary: CsvImportSummary) -> int:
        """Email the summary to every workspace owner; returns the number of emails sent."""
        recipients = await self.repository.list_workspace_owner_emails(summary.workspace_id)
        if not recipients:
            logger.warning("no owner emails for workspace=%s; csv import summary not sent", summary.workspace_id)
            return 0

        subject, text = render_csv_import_email(summary)
        if not self.api_key:
            logger.info(
                "email provider not configured; csv import summary workspace=%s count=%s failed=%s",
                summary.workspace_id,
                summary.count,
                len(summary.error_links),
            )
            return 0

        async with http_session(self.client, timeout=self.timeout_seconds) as client:
            for recipient in recipients:
                response = await client.post(
                    f"{self.api_url}/emails",
                    json={"from": self.sender, "to": [recipient], "subject": subject, "text": text},
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
        return len(recipients)


@lru_cache
def get_notifier() -> EmailNotifier:
    settings = get_settings()
    return EmailNotifier(
        get_repository(),
        api_url=settings.resend_api_url,
        api_key=settings.resend_api_key,
        sender=settings.email_from,
    )
