import logging

from fastapi import APIRouter, Depends, HTTPException, status
from redis.asyncio import Redis
from redis.exceptions import RedisError

from shortlinks.services.cursor_store import get_redis

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(redis: Redis = Depends(get_redis)) -> dict[str, str]:
    """Import jobs cannot make progress without the cursor store."""
    try:
        await redis.ping()
    except RedisError as exc:
        logger.warning("readiness check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="cursor store unavailable") from exc
    return {"status": "ready"}
