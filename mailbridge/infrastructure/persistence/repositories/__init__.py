"""Persistence repositories. Re-exports for dependency injection."""

from mailbridge.infrastructure.persistence.repositories.base import BaseRepository
from mailbridge.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailbridge.infrastructure.persistence.repositories.email_event_repo import (
    EmailEventRepository,
    EventClaim,
)

__all__ = [
    "BaseRepository",
    "EmailAccountRepository",
    "EmailEventRepository",
    "EventClaim",
]
