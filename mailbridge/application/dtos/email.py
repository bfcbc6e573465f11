"""DTOs for the mail pipeline use cases (no dependency on ORM or presentation schemas)."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class GmailPushNotification:
    """Decoded Pub/Sub message data from a Gmail watch."""

    email_address: str
    history_id: str


@dataclass(frozen=True)
class ClaimedMessage:
    """A ledger claim won by this worker; the message still needs fetch and forward."""

    account_id: str
    event_id: str
    provider_message_id: str


@dataclass
class IngestionSummary:
    """Counts for one push callback or re-drive pass."""

    claimed: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "claimed": self.claimed,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class SendReplyCommand:
    """Outbound reply request. Exactly one of reply_to_event_id or job_id is needed."""

    account_id: str
    tenant_id: str
    body: str
    reply_to_event_id: str | None = None
    job_id: str | None = None
    subject_override: str | None = None


@dataclass(frozen=True)
class SendReplyResult:
    event_id: str
    provider_message_id: str | None
    provider_thread_id: str | None
    provider_result: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WatchdogResult:
    """Per-account outcome of a watchdog sweep."""

    account_id: str
    provider: str
    action: str | None
    status: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "provider": self.provider,
            "action": self.action,
            "status": self.status,
            "error": self.error,
        }


@dataclass(frozen=True)
class RedriveResult:
    event_id: str
    account_id: str
    provider_message_id: str | None
    status: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "account_id": self.account_id,
            "provider_message_id": self.provider_message_id,
            "status": self.status,
            "error": self.error,
        }
