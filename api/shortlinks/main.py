from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from shortlinks.api.router import api_router
from shortlinks.core.config import get_settings
from shortlinks.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from shortlinks.services.cursor_store import get_redis
from shortlinks.services.repository import get_repository

QUEUE_MESSAGE_HEADER = "Upstash-Message-Id"
QUEUE_RETRIED_HEADER = "Upstash-Retried"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        shutdown_telemetry(app, app.state.telemetry)
        await get_repository().close()
        get_repository.cache_clear()
        await get_redis().aclose()
        get_redis.cache_clear()


configure_logging()
app = FastAPI(title=get_settings().app_name, lifespan=lifespan)
app.state.telemetry = setup_telemetry(app, get_settings())


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    message_id = request.headers.get(QUEUE_MESSAGE_HEADER)
    if message_id:
        # redeliveries of the same message share the id; retried counts attempts
        logger.info(
            "queue delivery path=%s status=%s message_id=%s retried=%s duration_ms=%.2f",
            request.url.path,
            response.status_code,
            message_id,
            request.headers.get(QUEUE_RETRIED_HEADER, "0"),
            elapsed_ms,
        )
    else:
        logger.info(
            "http request method=%s path=%s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
    return response


app.include_router(api_router)
