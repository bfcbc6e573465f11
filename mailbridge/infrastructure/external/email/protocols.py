"""Mail provider protocol and canonical data structures (provider-agnostic)."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
from mailbridge.shared.utils.datetime import to_iso_utc


@dataclass
class Attachment:
    """File attachment with standard (not URL-safe) base64 content."""

    filename: str
    mime_type: str
    base64: str

    def to_payload(self) -> dict[str, str]:
        return {"filename": self.filename, "mime_type": self.mime_type, "base64": self.base64}


@dataclass
class CanonicalMessage:
    """Provider-neutral inbound message."""

    provider_message_id: str
    provider_thread_id: str | None
    from_address: str | None
    to: list[str]
    cc: list[str]
    subject: str | None
    received_at: datetime
    body_text: str | None
    body_html: str | None
    attachments: list[Attachment] = field(default_factory=list)
    internet_message_id: str | None = None

    def to_payload(self, account_id: str, provider: str) -> dict[str, Any]:
        """Build the downstream consumer JSON body."""
        return {
            "account_id": account_id,
            "provider": provider,
            "provider_message_id": self.provider_message_id,
            "from": self.from_address,
            "to": self.to,
            "cc": self.cc,
            "subject": self.subject,
            "received_at": to_iso_utc(self.received_at),
            "body_text": self.body_text,
            "body_html": self.body_html,
            "attachments": [a.to_payload() for a in self.attachments],
        }


@dataclass
class HistoryDelta:
    """New message ids since a Gmail history cursor, in first-seen order."""

    message_ids: list[str]
    next_cursor: str
    thread_ids: dict[str, str] = field(default_factory=dict)


@dataclass
class WatchInfo:
    """Result of ensure_watch.

    Gmail fills history_id; Graph fills subscription_id. expires_at is the
    watch expiration or subscription expiry.
    """

    expires_at: datetime | None
    history_id: str | None = None
    subscription_id: str | None = None
    renewed: bool = False


@dataclass
class ReplyRequest:
    """Outbound reply to an inbound message."""

    to: str
    subject: str
    body: str
    provider_message_id: str | None
    provider_thread_id: str | None
    in_reply_to_header: str | None = None


@dataclass
class SendResult:
    """Provider identifiers for a sent reply."""

    provider_message_id: str | None
    provider_thread_id: str | None
    provider_result: dict[str, Any] = field(default_factory=dict)


class IMailProvider(Protocol):
    """Mail provider interface; implementations are selected by account.provider."""

    provider_name: str

    async def fetch_message(
        self, account: EmailAccount, provider_message_id: str
    ) -> CanonicalMessage:
        """Fetch one message with body and attachments in canonical form."""
        ...

    async def ensure_watch(self, account: EmailAccount, force: bool = False) -> WatchInfo:
        """Create or renew the push watch/subscription for the mailbox."""
        ...

    async def send_reply(self, account: EmailAccount, request: ReplyRequest) -> SendResult:
        """Send a reply through the provider."""
        ...
