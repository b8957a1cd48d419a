import asyncio

import httpx
import pytest

from shortlinks.services.storage import ObjectStorage, StorageError


def _storage(handler) -> tuple[ObjectStorage, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ObjectStorage("https://storage.example/bucket/", "secret", client=client), client


def test_stream_lines_yields_object_lines() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.url.path == "/bucket/imports/job_1.csv"
        return httpx.Response(200, text="link,url\r\nacme.co/a,https://example.com\n")

    async def run() -> list[str]:
        storage, client = _storage(handler)
        async with client:
            return [line async for line in storage.stream_lines("imports/job_1.csv")]

    assert asyncio.run(run()) == ["link,url", "acme.co/a,https://example.com"]


def test_stream_lines_raises_storage_error_for_missing_object() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    async def run() -> None:
        storage, client = _storage(handler)
        async with client:
            async for _ in storage.stream_lines("https://storage.example/other/missing.csv"):
                pass

    with pytest.raises(StorageError, match="object not found"):
        asyncio.run(run())


def test_delete_ignores_missing_objects_but_raises_on_errors() -> None:
    statuses = iter([404, 503])

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        return httpx.Response(next(statuses))

    async def run() -> None:
        storage, client = _storage(handler)
        async with client:
            await storage.delete("imports/job_1.csv")
            await storage.delete("imports/job_1.csv")

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(run())


def test_object_url_passes_absolute_urls_through() -> None:
    storage = ObjectStorage("https://storage.example/bucket")
    assert storage.object_url("/imports/a.csv") == "https://storage.example/bucket/imports/a.csv"
    assert storage.object_url("https://cdn.example/a.csv") == "https://cdn.example/a.csv"
