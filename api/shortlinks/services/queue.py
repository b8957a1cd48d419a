from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Any

import httpx

from shortlinks.core.config import get_settings
from shortlinks.core.http import http_session

logger = logging.getLogger(__name__)


class QStashClient:
    """Minimal QStash REST client: publish (optionally delayed) and bulk-cancel by destination."""

    def __init__(
        self,
        base_url: str,
        token: str | None,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.client = client
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}

    async def publish_json(
        self,
        *,
        url: str,
        body: dict[str, Any] | None = None,
        delay_seconds: float | None = None,
    ) -> str | None:
        headers = dict(self.headers)
        if delay_seconds is not None and delay_seconds > 0:
            headers["Upstash-Delay"] = f"{math.ceil(delay_seconds)}s"
        async with http_session(self.client, timeout=self.timeout_seconds) as client:
            response = await client.post(
                f"{self.base_url}/v2/publish/{url}",
                json=body if body is not None else {},
                headers=headers,
            )
            response.raise_for_status()
            payload = response.json()
        if isinstance(payload, dict):
            message_id = payload.get("messageId")
            return message_id if isinstance(message_id, str) else None
        return None

    async def delete_messages(self, *, url: str) -> int:
        """Cancel every pending message addressed to ``url``; returns how many were cancelled."""
        async with http_session(self.client, timeout=self.timeout_seconds) as client:
            response = await client.request(
                "DELETE",
                f"{self.base_url}/v2/messages",
                json={"url": url},
                headers=self.headers,
            )
            response.raise_for_status()
            if not response.content:
                return 0
            try:
                payload = response.json()
            except ValueError:
                logger.info("non-JSON cancel response from queue: %r", response.text[:200])
                return 0
        if isinstance(payload, dict):
            try:
                return int(payload.get("cancelled", 0))
            except (TypeError, ValueError):
                return 0
        return 0


@lru_cache
def get_queue() -> QStashClient:
    settings = get_settings()
    return QStashClient(
        base_url=settings.qstash_url,
        token=settings.qstash_token,
        timeout_seconds=settings.qstash_timeout_seconds,
    )
