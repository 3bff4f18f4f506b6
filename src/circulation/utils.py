"""Time helpers shared by the stores and services.

All timestamps are timezone-aware UTC. They are persisted as fixed-width
ISO-8601 strings so that string comparison in SQL matches time order.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize a datetime for storage.

    Examples:
        >>> to_iso(datetime(2025, 1, 1, tzinfo=timezone.utc))
        '2025-01-01T00:00:00.000000+00:00'
    """
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware datetime."""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end (negative if end is earlier)."""
    return (ensure_utc(end) - ensure_utc(start)).days
