"""Shared helpers: telemetry and utilities.

Used by domain, application, and infrastructure. No business logic.
"""

from mailbridge.shared.utils import (
    ensure_utc,
    from_timestamp_ms_utc,
    generate_cuid,
    utc_now,
)

__all__ = [
    "generate_cuid",
    "utc_now",
    "ensure_utc",
    "from_timestamp_ms_utc",
]
