"""UTC datetime helpers.

Every datetime the service stores or compares is timezone-aware UTC.
Provider payloads carry epoch milliseconds (Gmail) or ISO-8601 strings
(Graph); both are normalized here.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current UTC datetime with timezone info."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC (SQLite returns naive
    datetimes even for timezone-aware columns).

    Args:
        dt: A datetime that may be naive or aware, or None.

    Returns:
        UTC-aware datetime or None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def from_timestamp_ms_utc(timestamp_ms: int | str) -> datetime:
    """Create a UTC-aware datetime from epoch milliseconds (Gmail internalDate, watch expiration)."""
    return datetime.fromtimestamp(int(timestamp_ms) / 1000, tz=UTC)


def parse_iso_utc(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp such as Graph's ``2024-05-01T10:00:00Z``.

    Returns None for empty or unparseable input.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def to_iso_utc(dt: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with a trailing ``Z``."""
    normalized = ensure_utc(dt)
    assert normalized is not None
    return normalized.isoformat().replace("+00:00", "Z")
