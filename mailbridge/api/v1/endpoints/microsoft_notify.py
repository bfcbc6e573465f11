"""Microsoft Graph change-notification endpoint (validation handshake + notifications)."""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from mailbridge.api.v1.dependencies import get_ingestion_dispatcher
from mailbridge.application.use_cases.email import IngestionDispatcher
from mailbridge.core.config import get_settings
from mailbridge.domain.exceptions import ValidationException
from mailbridge.schemas.email import IngestionAckResponse

router = APIRouter()


@router.get("/microsoft/notify", response_model=None)
async def microsoft_validate(
    validation_token: str | None = Query(None, alias="validationToken"),
) -> PlainTextResponse | IngestionAckResponse:
    """Echo validationToken when Graph validates the endpoint."""
    if validation_token is not None:
        return PlainTextResponse(validation_token)
    return IngestionAckResponse()


@router.post("/microsoft/notify", response_model=None)
async def microsoft_notify(
    request: Request,
    background_tasks: BackgroundTasks,
    dispatcher: Annotated[IngestionDispatcher, Depends(get_ingestion_dispatcher)],
    validation_token: str | None = Query(None, alias="validationToken"),
) -> PlainTextResponse | IngestionAckResponse:
    """Claim the messages referenced by a notification batch.

    Notifications with a wrong clientState are dropped; the response is
    still 200 so Graph does not retry them.
    """
    if validation_token is not None:
        return PlainTextResponse(validation_token)

    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationException("Request body is not JSON") from e
    notifications = body.get("value") if isinstance(body, dict) else None
    if not isinstance(notifications, list):
        return IngestionAckResponse()

    claims = await dispatcher.claim_microsoft_notifications(notifications)
    if not claims:
        return IngestionAckResponse()
    if get_settings().ingestion_async:
        background_tasks.add_task(dispatcher.process_batch, claims)
        return IngestionAckResponse(claimed=len(claims))
    summary = await dispatcher.process_batch(claims)
    return IngestionAckResponse(
        claimed=summary.claimed, processed=summary.processed, failed=summary.failed
    )
