"""Email event repository: the idempotency ledger.

A message is handed downstream only by the caller that wins its claim.
Claims are decided by the (account_id, provider_message_id) unique index
for new rows and by conditional UPDATEs for existing ones, never by locks.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailbridge.domain.enums import EventDirection, EventStatus
from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
from mailbridge.infrastructure.persistence.models.email_event import EmailEvent
from mailbridge.infrastructure.persistence.repositories.base import BaseRepository
from mailbridge.shared.telemetry.logging import get_logger
from mailbridge.shared.utils.datetime import utc_now

if TYPE_CHECKING:
    from mailbridge.infrastructure.external.email.protocols import CanonicalMessage

logger = get_logger(__name__)

_MAX_ERROR_LENGTH = 2000
_UNFINISHED = (EventStatus.RECEIVED.value, EventStatus.PROCESSING.value)


@dataclass(frozen=True)
class EventClaim:
    """Outcome of init_inbound_event."""

    event_id: str
    should_process: bool


class EmailEventRepository(BaseRepository[EmailEvent]):
    """Ledger of inbound and outbound messages, one row per provider message."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        claim_timeout: timedelta = timedelta(minutes=15),
    ) -> None:
        super().__init__(session_factory, EmailEvent)
        self.claim_timeout = claim_timeout

    async def init_inbound_event(
        self,
        account: EmailAccount,
        provider_message_id: str,
        received_at: datetime,
        provider_thread_id: str | None = None,
    ) -> EventClaim:
        """Claim a message for processing.

        Returns should_process=True for exactly one concurrent caller per
        message. A processed row, or an unprocessed row whose claim is still
        fresh, yields False.
        """
        existing = await self.find_by_provider_message_id(
            account.id, provider_message_id
        )
        if existing is not None:
            if existing.status == EventStatus.PROCESSED.value:
                return EventClaim(existing.id, False)
            won = await self._reclaim(
                existing.id, received_at=received_at, provider_thread_id=provider_thread_id
            )
            return EventClaim(existing.id, won)

        event = EmailEvent(
            account_id=account.id,
            tenant_id=account.tenant_id,
            provider=account.provider,
            provider_message_id=provider_message_id,
            provider_thread_id=provider_thread_id,
            direction=EventDirection.INBOUND.value,
            occurred_at=received_at,
            status=EventStatus.RECEIVED.value,
            attempt_count=1,
            claimed_at=utc_now(),
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(event)
        except IntegrityError:
            winner = await self.find_by_provider_message_id(
                account.id, provider_message_id
            )
            logger.info(
                "Concurrent claim lost for message %s on account %s",
                provider_message_id,
                account.id,
            )
            return EventClaim(winner.id if winner else "", False)
        return EventClaim(event.id, True)

    async def reclaim(self, event_id: str) -> bool:
        """Claim an existing errored or stale event for re-drive."""
        return await self._reclaim(event_id)

    async def _reclaim(
        self,
        event_id: str,
        *,
        received_at: datetime | None = None,
        provider_thread_id: str | None = None,
    ) -> bool:
        now = utc_now()
        stale_before = now - self.claim_timeout
        values: dict[str, Any] = {
            "status": EventStatus.RECEIVED.value,
            "claimed_at": now,
            "last_error": None,
            "attempt_count": EmailEvent.attempt_count + 1,
        }
        if received_at is not None:
            values["occurred_at"] = received_at
        if provider_thread_id:
            values["provider_thread_id"] = provider_thread_id
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(EmailEvent)
                    .where(
                        EmailEvent.id == event_id,
                        or_(
                            EmailEvent.status == EventStatus.ERROR.value,
                            and_(
                                EmailEvent.status.in_(_UNFINISHED),
                                or_(
                                    EmailEvent.claimed_at.is_(None),
                                    EmailEvent.claimed_at < stale_before,
                                ),
                            ),
                        ),
                    )
                    .values(**values)
                )
        return (result.rowcount or 0) == 1

    async def mark_processing(self, event_id: str, message: CanonicalMessage) -> None:
        """Store the fetched message and move the event to processing."""
        await self.update_fields(
            event_id,
            status=EventStatus.PROCESSING.value,
            provider_thread_id=message.provider_thread_id,
            from_address=message.from_address,
            to_addresses=message.to,
            cc_addresses=message.cc,
            subject=message.subject,
            body_text=message.body_text,
            body_html=message.body_html,
            attachments=[a.to_payload() for a in message.attachments],
            occurred_at=message.received_at,
        )

    async def mark_processed(
        self, event_id: str, payload: dict[str, Any] | None = None
    ) -> None:
        """Terminal success. payload, when given, is merged into the metadata bag."""
        values: dict[str, Any] = {
            "status": EventStatus.PROCESSED.value,
            "processed_at": utc_now(),
            "last_error": None,
        }
        if payload:
            await self._merge_metadata(
                EmailEvent.id == event_id, payload=payload, **values
            )
        else:
            await self.update_fields(event_id, **values)

    async def link_job(
        self,
        event_id: str,
        tenant_id: str,
        job_id: str,
        conversation_id: str | None = None,
    ) -> EmailEvent | None:
        """Attach a downstream job to an inbound event of tenant.

        The ids are merged into the metadata bag, so keys written by
        processing survive. Returns None when no such inbound event exists.
        """
        payload = {"job_id": job_id}
        if conversation_id:
            payload["conversation_id"] = conversation_id
        return await self._merge_metadata(
            EmailEvent.id == event_id,
            EmailEvent.tenant_id == tenant_id,
            EmailEvent.direction == EventDirection.INBOUND.value,
            payload=payload,
        )

    async def _merge_metadata(
        self, *criteria: Any, payload: dict[str, Any], **values: Any
    ) -> EmailEvent | None:
        # Read-merge-write under a row lock; concurrent merges keep each other's keys.
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(EmailEvent).where(*criteria).with_for_update()
                )
                event = result.scalars().first()
                if event is None:
                    return None
                event.event_metadata = {**(event.event_metadata or {}), **payload}
                for column, value in values.items():
                    setattr(event, column, value)
        return event

    async def mark_error(self, event_id: str, message: str) -> None:
        await self.update_fields(
            event_id,
            status=EventStatus.ERROR.value,
            last_error=message[:_MAX_ERROR_LENGTH],
        )

    async def record_outbound(
        self,
        *,
        account: EmailAccount,
        provider_message_id: str | None,
        provider_thread_id: str | None,
        to: list[str],
        subject: str,
        body_text: str,
        status: EventStatus,
        metadata: dict[str, Any],
        error: str | None = None,
    ) -> EmailEvent:
        """Insert an outbound row directly as processed or error."""
        now = utc_now()
        event = EmailEvent(
            account_id=account.id,
            tenant_id=account.tenant_id,
            provider=account.provider,
            provider_message_id=provider_message_id,
            provider_thread_id=provider_thread_id,
            direction=EventDirection.OUTBOUND.value,
            from_address=account.email_address,
            to_addresses=to,
            cc_addresses=[],
            subject=subject,
            body_text=body_text,
            attachments=[],
            occurred_at=now,
            status=status.value,
            attempt_count=1,
            last_error=error[:_MAX_ERROR_LENGTH] if error else None,
            processed_at=now if status == EventStatus.PROCESSED else None,
            event_metadata=metadata,
        )
        return await self.create(event)

    async def find_by_provider_message_id(
        self, account_id: str, provider_message_id: str
    ) -> EmailEvent | None:
        return await self._first(
            select(EmailEvent).where(
                EmailEvent.account_id == account_id,
                EmailEvent.provider_message_id == provider_message_id,
            )
        )

    async def find_inbound(self, event_id: str, tenant_id: str) -> EmailEvent | None:
        """Return an inbound event by id if it belongs to tenant."""
        return await self._first(
            select(EmailEvent).where(
                EmailEvent.id == event_id,
                EmailEvent.tenant_id == tenant_id,
                EmailEvent.direction == EventDirection.INBOUND.value,
            )
        )

    async def find_latest_inbound_by_job(
        self, tenant_id: str, job_id: str
    ) -> EmailEvent | None:
        """Return the newest inbound event whose metadata carries job_id."""
        return await self._first(
            select(EmailEvent)
            .where(
                EmailEvent.tenant_id == tenant_id,
                EmailEvent.direction == EventDirection.INBOUND.value,
                EmailEvent.event_metadata["job_id"].as_string() == job_id,
            )
            .order_by(EmailEvent.created_at.desc(), EmailEvent.occurred_at.desc())
        )

    async def list_for_account(self, account_id: str) -> list[EmailEvent]:
        return await self._all(
            select(EmailEvent)
            .where(EmailEvent.account_id == account_id)
            .order_by(EmailEvent.created_at)
        )

    async def list_redrivable(
        self, *, max_attempts: int, limit: int
    ) -> list[EmailEvent]:
        """Inbound events worth another attempt.

        Errored events below max_attempts, plus received/processing events
        whose claim is older than the claim timeout.
        """
        stale_before = utc_now() - self.claim_timeout
        return await self._all(
            select(EmailEvent)
            .where(
                EmailEvent.direction == EventDirection.INBOUND.value,
                EmailEvent.provider_message_id.is_not(None),
                or_(
                    and_(
                        EmailEvent.status == EventStatus.ERROR.value,
                        EmailEvent.attempt_count < max_attempts,
                    ),
                    and_(
                        EmailEvent.status.in_(_UNFINISHED),
                        or_(
                            EmailEvent.claimed_at.is_(None),
                            EmailEvent.claimed_at < stale_before,
                        ),
                    ),
                ),
            )
            .order_by(EmailEvent.created_at)
            .limit(limit)
        )
