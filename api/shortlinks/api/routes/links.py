import logging
from datetime import datetime, timedelta, timezone

import httpx
from fastapi import APIRouter, Depends, HTTPException, status

from shortlinks.core.config import Settings, get_settings
from shortlinks.core.security import require_internal_api_key
from shortlinks.jobs.ab_testing import schedule_test_completion
from shortlinks.schemas.links import LinkTestsOut, LinkTestsPatchRequest
from shortlinks.services.queue import get_queue
from shortlinks.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)

logger = logging.getLogger(__name__)

MAX_TEST_DURATION = timedelta(days=30)

router = APIRouter()


@router.patch(
    "/{link_id}/tests",
    response_model=LinkTestsOut,
    dependencies=[Depends(require_internal_api_key)],
)
async def patch_link_tests(
    link_id: str,
    payload: LinkTestsPatchRequest,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    queue=Depends(get_queue),
) -> LinkTestsOut:
    if payload.test_completed_at is not None:
        if payload.test_completed_at - datetime.now(timezone.utc) > MAX_TEST_DURATION:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail="test_completed_at must be within 30 days",
            )

    try:
        link = await repository.update_link_tests(
            link_id=link_id,
            test_variants=[variant.model_dump() for variant in payload.test_variants]
            if payload.test_variants is not None
            else None,
            test_completed_at=payload.test_completed_at,
        )
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    try:
        message_id = await schedule_test_completion(link, queue=queue, app_domain=settings.app_domain)
    except httpx.HTTPError as exc:
        logger.error("test variants saved but completion was not scheduled for link=%s: %s", link.id, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"failed to schedule test completion: {exc}",
        ) from exc

    return LinkTestsOut(
        id=link.id,
        test_variants=link.test_variants,
        test_completed_at=link.test_completed_at,
        scheduled_message_id=message_id,
    )
