from __future__ import annotations

import logging
from datetime import datetime, timezone

from opentelemetry import trace

from shortlinks.services.queue import QStashClient
from shortlinks.services.repository import LinkTestSchedule

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def completion_url(app_domain: str, link_id: str) -> str:
    return f"{app_domain.rstrip('/')}/api/cron/links/{link_id}/complete-tests"


async def schedule_test_completion(
    link: LinkTestSchedule,
    *,
    queue: QStashClient,
    app_domain: str,
    now: datetime | None = None,
) -> str | None:
    """Replace any pending completion message for ``link`` with one due at ``test_completed_at``.

    The previous message is always cancelled first, so at most one completion
    message is outstanding per link. Returns the new message id, or ``None``
    when nothing was scheduled (no test, or completion already in the past).
    """
    target = completion_url(app_domain, link.id)
    with tracer.start_as_current_span("links.schedule_test_completion") as span:
        span.set_attribute("link.id", link.id)
        try:
            await queue.delete_messages(url=target)
        except Exception as exc:  # cancellation is best-effort
            logger.error("failed to cancel previously scheduled completion messages for link=%s: %s", link.id, exc)

        if not link.test_variants or link.test_completed_at is None:
            return None

        current = now or datetime.now(timezone.utc)
        completed_at = link.test_completed_at
        if completed_at.tzinfo is None:
            completed_at = completed_at.replace(tzinfo=timezone.utc)
        if completed_at <= current:
            return None

        delay_seconds = (completed_at - current).total_seconds()
        message_id = await queue.publish_json(url=target, delay_seconds=delay_seconds)
        span.set_attribute("links.test_completion_delay_seconds", delay_seconds)
        logger.info("scheduled test completion for link=%s in %.0fs", link.id, delay_seconds)
        return message_id
