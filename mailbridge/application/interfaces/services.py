"""Service interfaces (ports) for the application layer.

Protocols define contracts for application services (DIP).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from mailbridge.infrastructure.external.email.protocols import (
        HistoryDelta,
        IMailProvider,
    )
    from mailbridge.infrastructure.persistence.models.email_account import EmailAccount


# Downstream consumer interface
class IDownstreamConsumer(Protocol):
    """Protocol for the external automation consumer that receives new messages."""

    async def deliver(self, payload: dict[str, Any]) -> int:
        """POST one message payload; raise DownstreamDeliveryFailed on non-2xx."""


# Gmail history interface
class IGmailHistoryReader(Protocol):
    """Protocol for reading Gmail history deltas."""

    async def list_new_message_ids(
        self, account: EmailAccount, start_history_id: str
    ) -> HistoryDelta:
        """Return message ids added since start_history_id."""


# Provider registry interface
class IMailProviderRegistry(Protocol):
    """Protocol for selecting the mail adapter of an account."""

    def for_account(self, account: EmailAccount) -> IMailProvider:
        """Return the adapter matching account.provider."""

    def gmail(self) -> IGmailHistoryReader:
        """Return the Gmail adapter (history reads)."""
