"""Application services: connection health classification."""

from mailbridge.application.services.connection_status import (
    classify_auth_failure,
    compute_connection_status,
    display_health,
    healthy_status,
)

__all__ = [
    "classify_auth_failure",
    "compute_connection_status",
    "display_health",
    "healthy_status",
]
