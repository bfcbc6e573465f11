"""Shared utilities: datetime and generators."""

from mailbridge.shared.utils.datetime import (
    ensure_utc,
    from_timestamp_ms_utc,
    parse_iso_utc,
    to_iso_utc,
    utc_now,
)
from mailbridge.shared.utils.generators import generate_cuid, generate_nonce

__all__ = [
    "generate_cuid",
    "generate_nonce",
    "utc_now",
    "ensure_utc",
    "from_timestamp_ms_utc",
    "parse_iso_utc",
    "to_iso_utc",
]
