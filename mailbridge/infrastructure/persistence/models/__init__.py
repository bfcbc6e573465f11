"""Persistence models: ORM entities and mixins."""

from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
from mailbridge.infrastructure.persistence.models.email_event import EmailEvent
from mailbridge.infrastructure.persistence.models.mixins import (
    CuidMixin,
    MultiTenantModel,
    TenantMixin,
    TimestampMixin,
)

__all__ = [
    "EmailAccount",
    "EmailEvent",
    "CuidMixin",
    "TenantMixin",
    "TimestampMixin",
    "MultiTenantModel",
]
