from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from functools import lru_cache
from typing import Any

from redis.asyncio import Redis

from shortlinks.core.config import get_settings

logger = logging.getLogger(__name__)

KEY_NAMESPACE = "import:csv"

# SET only when the new cursor is ahead of the stored one; returns 1 if written
ADVANCE_CURSOR_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0') or 0
local candidate = tonumber(ARGV[1])
if candidate > current then
  redis.call('SET', KEYS[1], ARGV[1])
  return 1
end
return 0
"""


@dataclass(slots=True)
class ErrorLink:
    domain: str
    key: str
    error: str


class CursorStore:
    """Per-job progress of a CSV import, kept in Redis under ``import:csv:{workspace}:{job}``.

    The store is the only source of truth across invocations: counters use
    ``INCRBY``, failures ``RPUSH`` and touched domains ``SADD`` so concurrent or
    repeated invocations never overwrite each other's work.
    """

    def __init__(self, redis: Redis, *, workspace_id: str, job_id: str) -> None:
        self.redis = redis
        self.prefix = f"{KEY_NAMESPACE}:{workspace_id}:{job_id}"

    @property
    def cursor_key(self) -> str:
        return f"{self.prefix}:cursor"

    @property
    def created_key(self) -> str:
        return f"{self.prefix}:created"

    @property
    def failed_key(self) -> str:
        return f"{self.prefix}:failed"

    @property
    def domains_key(self) -> str:
        return f"{self.prefix}:domains"

    @property
    def keys(self) -> tuple[str, str, str, str]:
        return (self.cursor_key, self.created_key, self.failed_key, self.domains_key)

    async def get_cursor(self) -> int:
        return _as_int(await self.redis.get(self.cursor_key))

    async def set_cursor(self, value: int) -> bool:
        """Advance the cursor to ``value``; a lower value from a slower duplicate invocation is ignored."""
        return bool(await self.redis.eval(ADVANCE_CURSOR_SCRIPT, 1, self.cursor_key, int(value)))

    async def get_created(self) -> int:
        return _as_int(await self.redis.get(self.created_key))

    async def increment_created(self, count: int) -> int:
        if count <= 0:
            return await self.get_created()
        return int(await self.redis.incrby(self.created_key, count))

    async def append_failed(self, rows: list[ErrorLink]) -> None:
        if not rows:
            return
        await self.redis.rpush(self.failed_key, *(json.dumps(asdict(row)) for row in rows))

    async def list_failed(self) -> list[ErrorLink]:
        raw_rows = await self.redis.lrange(self.failed_key, 0, -1)
        return [row for row in (_decode_error_link(raw) for raw in raw_rows) if row is not None]

    async def add_domains(self, domains: list[str]) -> None:
        members = [domain for domain in domains if domain]
        if members:
            await self.redis.sadd(self.domains_key, *members)

    async def list_domains(self) -> list[str]:
        return sorted(await self.redis.smembers(self.domains_key))

    async def clear(self) -> list[BaseException | None]:
        """Delete every key of the job; failures are returned, not raised."""
        results = await asyncio.gather(
            *(self.redis.delete(key) for key in self.keys),
            return_exceptions=True,
        )
        return [result if isinstance(result, BaseException) else None for result in results]


def _as_int(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("ignoring non-integer cursor store value: %r", value)
        return 0


def _decode_error_link(raw: Any) -> ErrorLink | None:
    try:
        decoded = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning("ignoring malformed failed-row entry: %r", raw)
        return None
    if not isinstance(decoded, dict):
        return None
    return ErrorLink(
        domain=str(decoded.get("domain") or ""),
        key=str(decoded.get("key") or ""),
        error=str(decoded.get("error") or ""),
    )


@lru_cache
def get_redis() -> Redis:
    settings = get_settings()
    return Redis.from_url(settings.redis_url, decode_responses=True)
