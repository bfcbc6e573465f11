"""Security: JWT handling for interactive callers."""

from mailbridge.infrastructure.security.jwt import (
    create_access_token,
    tenant_from_token,
    verify_token,
)

__all__ = [
    "create_access_token",
    "tenant_from_token",
    "verify_token",
]
