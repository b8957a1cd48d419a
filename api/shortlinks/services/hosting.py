from __future__ import annotations

import logging
from functools import lru_cache

import httpx

from shortlinks.core.config import get_settings
from shortlinks.core.http import http_session

logger = logging.getLogger(__name__)


class VercelClient:
    """Registers custom short-link domains with the hosting project."""

    def __init__(
        self,
        api_url: str,
        token: str | None,
        project_id: str | None,
        team_id: str | None = None,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.project_id = project_id
        self.team_id = team_id
        self.timeout_seconds = timeout_seconds
        self.client = client

    @property
    def configured(self) -> bool:
        return bool(self.token and self.project_id)

    async def add_domain(self, domain: str) -> bool:
        if not self.configured:
            logger.info("hosting provider not configured; skipping domain registration for %s", domain)
            return False

        params = {"teamId": self.team_id} if self.team_id else None
        async with http_session(self.client, timeout=self.timeout_seconds) as client:
            response = await client.post(
                f"{self.api_url}/v10/projects/{self.project_id}/domains",
                params=params,
                json={"name": domain.lower()},
                headers={"Authorization": f"Bearer {self.token}"},
            )
        if response.status_code == 409:
            logger.info("domain already registered with hosting provider: %s", domain)
            return True
        response.raise_for_status()
        return True


@lru_cache
def get_hosting() -> VercelClient:
    settings = get_settings()
    return VercelClient(
        api_url=settings.vercel_api_url,
        token=settings.vercel_api_token,
        project_id=settings.vercel_project_id,
        team_id=settings.vercel_team_id,
    )
