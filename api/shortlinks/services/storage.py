from __future__ import annotations

from collections.abc import AsyncIterator
from functools import lru_cache

import httpx

from shortlinks.core.config import get_settings
from shortlinks.core.http import http_session


class StorageError(Exception):
    """Raised when an object cannot be read from storage."""


class ObjectStorage:
    def __init__(
        self,
        base_url: str,
        access_token: str | None = None,
        *,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.client = client
        self.headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}

    def object_url(self, key_or_url: str) -> str:
        if key_or_url.startswith(("http://", "https://")):
            return key_or_url
        return f"{self.base_url}/{key_or_url.lstrip('/')}"

    async def stream_lines(self, key_or_url: str) -> AsyncIterator[str]:
        """Yield the object's text lines as they arrive, without line terminators."""
        url = self.object_url(key_or_url)
        async with http_session(self.client, timeout=self.timeout_seconds) as client:
            async with client.stream("GET", url, headers=self.headers) as response:
                if response.status_code == 404:
                    raise StorageError(f"object not found: {key_or_url}")
                if response.status_code != 200:
                    raise StorageError(f"object fetch failed with status {response.status_code}: {key_or_url}")
                async for line in response.aiter_lines():
                    yield line

    async def delete(self, key_or_url: str) -> None:
        url = self.object_url(key_or_url)
        async with http_session(self.client, timeout=self.timeout_seconds) as client:
            response = await client.delete(url, headers=self.headers)
            if response.status_code == 404:
                return
            response.raise_for_status()


@lru_cache
def get_storage() -> ObjectStorage:
    settings = get_settings()
    return ObjectStorage(
        base_url=settings.storage_base_url,
        access_token=settings.storage_access_token,
        timeout_seconds=settings.storage_timeout_seconds,
    )
