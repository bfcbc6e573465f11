"""Domain enumerations for the mailbridge application.

Enums represent fixed sets of domain values (providers, event and
connection states).
"""

from enum import Enum


class Provider(str, Enum):
    """Mailbox provider. Every provider-specific branch keys on this value."""

    GOOGLE = "google"
    MICROSOFT = "microsoft"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid provider values as strings."""
        return [provider.value for provider in cls]


class AccountStatus(str, Enum):
    """Whether a mailbox is connected. Only explicit disconnect flows set DISCONNECTED."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ConnectionHealth(str, Enum):
    """Connection health shown to the account owner.

    The first four are persisted; INACTIVE, WATCH_EXPIRED and
    SUBSCRIPTION_EXPIRED are only computed for display.
    """

    OK = "ok"
    NEEDS_RECONNECT = "needs_reconnect"
    REFRESH_FAILED = "refresh_failed"
    PROVIDER_REVOKED = "provider_revoked"
    WATCH_EXPIRED = "watch_expired"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    INACTIVE = "inactive"


class EventDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class EventStatus(str, Enum):
    """Processing state of a ledger row.

    received -> processing -> processed | error; received -> error.
    """

    RECEIVED = "received"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"
