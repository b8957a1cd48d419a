import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from shortlinks.core.config import Settings, get_settings
from shortlinks.core.signature import SIGNATURE_HEADER, SignatureVerificationError, verify_qstash_signature
from shortlinks.jobs.csv_import import CsvImportRunner, get_csv_import_runner
from shortlinks.schemas.imports import CsvImportPayload

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/import/csv")
async def import_csv(
    request: Request,
    settings: Settings = Depends(get_settings),
    runner: CsvImportRunner = Depends(get_csv_import_runner),
) -> str:
    raw_body = await request.body()
    try:
        verify_qstash_signature(
            raw_body=raw_body,
            signature=request.headers.get(SIGNATURE_HEADER),
            settings=settings,
        )
    except SignatureVerificationError as exc:
        logger.warning("rejected csv import message: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    try:
        payload = CsvImportPayload.model_validate_json(raw_body)
    except ValidationError as exc:
        logger.error("invalid csv import payload: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=exc.errors(include_url=False, include_context=False, include_input=False),
        ) from exc

    try:
        await runner.run(payload)
    except Exception as exc:
        logger.exception("error importing csv links id=%s workspace=%s", payload.id, payload.workspace_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error importing CSV links: {exc}",
        ) from exc

    return "OK"
