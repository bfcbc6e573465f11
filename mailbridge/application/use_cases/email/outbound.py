"""Outbound reply use case: resolve the inbound event, send through its provider, record the result."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mailbridge.application.dtos.email import SendReplyCommand, SendReplyResult
from mailbridge.application.interfaces.repositories import (
    IEmailAccountRepository,
    IEmailEventRepository,
)
from mailbridge.application.interfaces.services import IMailProviderRegistry
from mailbridge.domain.enums import EventStatus, Provider
from mailbridge.domain.exceptions import (
    MailBridgeException,
    MissingThreadContext,
    ResourceNotFoundException,
    ValidationException,
)
from mailbridge.infrastructure.external.email.protocols import ReplyRequest
from mailbridge.shared.telemetry.logging import get_logger

if TYPE_CHECKING:
    from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
    from mailbridge.infrastructure.persistence.models.email_event import EmailEvent

logger = get_logger(__name__)


def build_reply_subject(subject: str | None, override: str | None = None) -> str:
    """Reply subject: explicit override, else 'Re: <subject>' without doubling the prefix."""
    if override and override.strip():
        return override.strip()
    base = (subject or "").strip()
    if not base:
        return "Re:"
    if base.lower().startswith("re:"):
        return base
    return f"Re: {base}"


class OutboundSender:
    """Sends replies to inbound messages and records outbound ledger rows."""

    def __init__(
        self,
        account_repo: IEmailAccountRepository,
        event_repo: IEmailEventRepository,
        providers: IMailProviderRegistry,
    ) -> None:
        self.account_repo = account_repo
        self.event_repo = event_repo
        self.providers = providers

    async def send_reply(self, command: SendReplyCommand) -> SendReplyResult:
        """Send a reply; validation failures create no event, send failures create an error event.

        Raises:
            ValidationException: Missing target, provider mismatch or no sender address.
            ResourceNotFoundException: Account or inbound event not found for tenant.
            MissingThreadContext: Inbound event lacks the id its provider needs.
            MailBridgeException: Provider or token failure while sending.
        """
        if not command.body or not command.body.strip():
            raise ValidationException("Reply body is required", "body")
        if not command.reply_to_event_id and not command.job_id:
            raise ValidationException(
                "reply_to_event_id or job_id is required", "reply_to_event_id"
            )

        account = await self.account_repo.get_by_id_and_tenant(
            command.account_id, command.tenant_id
        )
        if account is None:
            raise ResourceNotFoundException("email_account", command.account_id)

        if command.reply_to_event_id:
            inbound = await self.event_repo.find_inbound(
                command.reply_to_event_id, command.tenant_id
            )
            target = command.reply_to_event_id
        else:
            inbound = await self.event_repo.find_latest_inbound_by_job(
                command.tenant_id, command.job_id or ""
            )
            target = f"job:{command.job_id}"
        if inbound is None:
            raise ResourceNotFoundException("email_event", target)

        if inbound.provider != account.provider:
            raise ValidationException(
                "Account provider does not match the inbound event provider", "account_id"
            )
        if account.provider == Provider.GOOGLE.value and not inbound.provider_thread_id:
            raise MissingThreadContext(account.provider, "thread id")
        if account.provider == Provider.MICROSOFT.value and not inbound.provider_message_id:
            raise MissingThreadContext(account.provider, "message id")
        if not inbound.from_address:
            raise ValidationException("Inbound event has no sender address", "from")

        metadata = dict(inbound.event_metadata or {})
        job_id = command.job_id or metadata.get("job_id")
        request = ReplyRequest(
            to=inbound.from_address,
            subject=build_reply_subject(inbound.subject, command.subject_override),
            body=command.body,
            provider_message_id=inbound.provider_message_id,
            provider_thread_id=inbound.provider_thread_id,
            in_reply_to_header=metadata.get("internet_message_id"),
        )
        outbound_metadata = {
            "in_reply_to": inbound.provider_message_id,
            "reply_to_event_id": inbound.id,
        }
        if job_id:
            outbound_metadata["job_id"] = job_id

        try:
            provider = self.providers.for_account(account)
            sent = await provider.send_reply(account, request)
        except MailBridgeException as e:
            logger.warning("Reply send failed for account %s: %s", account.id, e.message)
            await self._record_failure(
                account, inbound, request, outbound_metadata, e.message
            )
            raise
        except Exception as e:
            logger.exception("Unexpected error sending reply for account %s", account.id)
            await self._record_failure(
                account, inbound, request, outbound_metadata, str(e) or type(e).__name__
            )
            raise

        event = await self.event_repo.record_outbound(
            account=account,
            provider_message_id=sent.provider_message_id,
            provider_thread_id=sent.provider_thread_id or inbound.provider_thread_id,
            to=[request.to],
            subject=request.subject,
            body_text=request.body,
            status=EventStatus.PROCESSED,
            metadata={**outbound_metadata, "provider_result": sent.provider_result},
        )
        logger.info(
            "Reply sent for account %s in reply to event %s", account.id, inbound.id
        )
        return SendReplyResult(
            event_id=event.id,
            provider_message_id=sent.provider_message_id,
            provider_thread_id=event.provider_thread_id,
            provider_result=sent.provider_result,
        )

    async def _record_failure(
        self,
        account: EmailAccount,
        inbound: EmailEvent,
        request: ReplyRequest,
        metadata: dict[str, Any],
        error: str,
    ) -> None:
        await self.event_repo.record_outbound(
            account=account,
            provider_message_id=None,
            provider_thread_id=inbound.provider_thread_id,
            to=[request.to],
            subject=request.subject,
            body_text=request.body,
            status=EventStatus.ERROR,
            metadata=metadata,
            error=error,
        )
