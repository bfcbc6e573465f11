"""Repository interfaces (ports) for the application layer.

Protocols define contracts that infrastructure implementations must fulfill (DIP).
ORM models and ledger types are referenced for typing only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from mailbridge.domain.enums import ConnectionHealth, EventStatus

if TYPE_CHECKING:
    from mailbridge.infrastructure.external.email.protocols import CanonicalMessage
    from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
    from mailbridge.infrastructure.persistence.models.email_event import EmailEvent
    from mailbridge.infrastructure.persistence.repositories.email_event_repo import (
        EventClaim,
    )


# Email account repository interface
class IEmailAccountRepository(Protocol):
    """Protocol for connected mailbox accounts (DIP)."""

    async def get_by_id(self, entity_id: str) -> EmailAccount | None:
        """Return account by id."""

    async def get_by_id_and_tenant(
        self, account_id: str, tenant_id: str
    ) -> EmailAccount | None:
        """Return account by id if it belongs to tenant."""

    async def list_connected(self) -> list[EmailAccount]:
        """Return every connected account (watchdog sweep)."""

    async def find_connected_by_address(
        self, provider: str, email_address: str
    ) -> EmailAccount | None:
        """Return the connected account for a provider mailbox address."""

    async def find_by_subscription_id(self, subscription_id: str) -> EmailAccount | None:
        """Return the connected Microsoft account owning a Graph subscription."""

    async def record_error(
        self,
        account_id: str,
        message: str,
        health: ConnectionHealth | None = None,
    ) -> None:
        """Persist last error (and health when classified)."""

    async def clear_error(self, account_id: str, health: ConnectionHealth) -> None:
        """Clear last error fields and set health."""

    async def record_push(self, account_id: str) -> None:
        """Stamp the last push notification time."""

    async def record_success(self, account_id: str) -> None:
        """Stamp the last successful sync time."""

    async def set_history_id(self, account_id: str, history_id: str) -> None:
        """Overwrite the Gmail history cursor."""


# Email event repository interface
class IEmailEventRepository(Protocol):
    """Protocol for the inbound/outbound message ledger (DIP)."""

    async def get_by_id(self, entity_id: str) -> EmailEvent | None:
        """Return event by id."""

    async def init_inbound_event(
        self,
        account: EmailAccount,
        provider_message_id: str,
        received_at: datetime,
        provider_thread_id: str | None = None,
    ) -> EventClaim:
        """Claim a message; should_process is True for exactly one caller."""

    async def reclaim(self, event_id: str) -> bool:
        """Claim an errored or stale event for re-drive."""

    async def mark_processing(self, event_id: str, message: CanonicalMessage) -> None:
        """Store the fetched message and move to processing."""

    async def mark_processed(
        self, event_id: str, payload: dict[str, Any] | None = None
    ) -> None:
        """Terminal success; payload merged into metadata."""

    async def mark_error(self, event_id: str, message: str) -> None:
        """Record a retryable failure."""

    async def link_job(
        self,
        event_id: str,
        tenant_id: str,
        job_id: str,
        conversation_id: str | None = None,
    ) -> EmailEvent | None:
        """Merge job (and conversation) ids into an inbound event's metadata."""

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
        """Insert an outbound event as processed or error."""

    async def find_inbound(self, event_id: str, tenant_id: str) -> EmailEvent | None:
        """Return an inbound event by id within tenant."""

    async def find_latest_inbound_by_job(
        self, tenant_id: str, job_id: str
    ) -> EmailEvent | None:
        """Return the newest inbound event tagged with job_id."""

    async def list_redrivable(self, *, max_attempts: int, limit: int) -> list[EmailEvent]:
        """Return errored or stale inbound events eligible for another attempt."""
