from fastapi import APIRouter

from shortlinks.api.routes import cron, health, links

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(cron.router, prefix="/api/cron", tags=["cron"])
api_router.include_router(links.router, prefix="/api/links", tags=["links"])
