"""Outbound reply endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from mailbridge.api.v1.dependencies import Caller, get_caller, get_outbound_sender
from mailbridge.application.dtos.email import SendReplyCommand
from mailbridge.application.use_cases.email import OutboundSender
from mailbridge.core.limiter import limit_send
from mailbridge.domain.exceptions import AuthorizationException
from mailbridge.schemas.email import SendReplyRequest, SendReplyResponse

router = APIRouter()


@router.post("/send", response_model=SendReplyResponse)
@limit_send
async def send_reply(
    request: Request,
    body: SendReplyRequest,
    caller: Annotated[Caller, Depends(get_caller)],
    sender: Annotated[OutboundSender, Depends(get_outbound_sender)],
) -> SendReplyResponse:
    """Reply to an inbound message (by event id or job id) through its provider.

    Internal callers (X-Internal-Token) may act for any tenant; JWT callers
    only for the tenant in their token.
    """
    if not caller.may_act_for(body.client_id):
        raise AuthorizationException("email", "send")
    result = await sender.send_reply(
        SendReplyCommand(
            account_id=body.account_id,
            tenant_id=body.client_id,
            body=body.body,
            reply_to_event_id=body.reply_to_event_id,
            job_id=body.job_id,
            subject_override=body.subject_override,
        )
    )
    return SendReplyResponse(
        event_id=result.event_id,
        provider_message_id=result.provider_message_id,
        provider_thread_id=result.provider_thread_id,
    )
