"""Ledger maintenance endpoints (internal)."""

from typing import Annotated

from fastapi import APIRouter, Depends

from mailbridge.api.v1.dependencies import (
    get_email_event_repo,
    get_redrive_sweep,
    require_internal_token,
)
from mailbridge.application.use_cases.email import RedriveSweep
from mailbridge.domain.exceptions import ResourceNotFoundException
from mailbridge.infrastructure.persistence.repositories import EmailEventRepository
from mailbridge.schemas.email import LinkJobRequest, LinkJobResponse, RedriveResponse

router = APIRouter()


@router.post(
    "/events/redrive",
    response_model=RedriveResponse,
    dependencies=[Depends(require_internal_token)],
)
async def redrive_events(
    sweep: Annotated[RedriveSweep, Depends(get_redrive_sweep)],
) -> RedriveResponse:
    """Re-claim errored and stuck inbound events and push them downstream again."""
    results = await sweep.run()
    return RedriveResponse.from_results([r.to_dict() for r in results])


@router.post(
    "/events/{event_id}/link",
    response_model=LinkJobResponse,
    dependencies=[Depends(require_internal_token)],
)
async def link_event_to_job(
    event_id: str,
    body: LinkJobRequest,
    event_repo: Annotated[EmailEventRepository, Depends(get_email_event_repo)],
) -> LinkJobResponse:
    """Tag an inbound event with the downstream job it created, so replies can target the job."""
    event = await event_repo.link_job(
        event_id, body.client_id, body.job_id, body.conversation_id
    )
    if event is None:
        raise ResourceNotFoundException("email_event", event_id)
    metadata = event.event_metadata or {}
    return LinkJobResponse(
        event_id=event.id,
        job_id=metadata["job_id"],
        conversation_id=metadata.get("conversation_id"),
    )
