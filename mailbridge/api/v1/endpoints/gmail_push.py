"""Gmail Pub/Sub push endpoint.

Claims are recorded before the response; fetch and forward run in a
background task unless INGESTION_ASYNC is false.
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request

from mailbridge.api.v1.dependencies import get_ingestion_dispatcher
from mailbridge.application.use_cases.email import (
    IngestionDispatcher,
    decode_pubsub_message,
)
from mailbridge.core.config import get_settings
from mailbridge.domain.exceptions import ValidationException
from mailbridge.schemas.email import IngestionAckResponse
from mailbridge.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/google/push", response_model=IngestionAckResponse)
async def gmail_push(
    request: Request,
    background_tasks: BackgroundTasks,
    dispatcher: Annotated[IngestionDispatcher, Depends(get_ingestion_dispatcher)],
    token: str | None = Query(None),
    x_goog_channel_token: Annotated[str | None, Header()] = None,
    x_goog_resource_token: Annotated[str | None, Header()] = None,
) -> IngestionAckResponse:
    """Handle a Gmail watch notification.

    A wrong verification token gets a 200 with no side effects so the
    caller learns nothing; malformed message data is a 400.
    """
    supplied = token or x_goog_channel_token or x_goog_resource_token
    if not dispatcher.verify_gmail_token(supplied):
        logger.warning("Gmail push rejected: invalid verification token")
        return IngestionAckResponse()

    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationException("Request body is not JSON") from e
    notification = decode_pubsub_message(body)
    if notification is None:
        return IngestionAckResponse()

    claims = await dispatcher.claim_gmail_notification(notification)
    if not claims:
        return IngestionAckResponse()
    if get_settings().ingestion_async:
        background_tasks.add_task(dispatcher.process_batch, claims)
        return IngestionAckResponse(claimed=len(claims))
    summary = await dispatcher.process_batch(claims)
    return IngestionAckResponse(
        claimed=summary.claimed, processed=summary.processed, failed=summary.failed
    )
