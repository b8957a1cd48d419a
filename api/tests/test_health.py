from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from fakes import FakeRedis
from shortlinks.main import app
from shortlinks.services.cursor_store import get_redis


class UnreachableRedis(FakeRedis):
    async def ping(self) -> bool:
        raise RedisConnectionError("connection refused")


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_reports_cursor_store_state() -> None:
    client = TestClient(app)
    app.dependency_overrides[get_redis] = FakeRedis
    try:
        assert client.get("/readyz").json() == {"status": "ready"}
        app.dependency_overrides[get_redis] = UnreachableRedis
        response = client.get("/readyz")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 503
    assert response.json()["detail"] == "cursor store unavailable"
