"""
Time helpers.

All timestamps are stored as naive UTC datetimes. Sweepers compare created_at /
ends_at columns against cutoffs built here, so every comparison happens in the
same frame regardless of the host timezone.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional

UTC = timezone.utc


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def cutoff(minutes: float = 0, seconds: float = 0, now: Optional[datetime] = None) -> datetime:
    """Naive UTC instant `minutes`/`seconds` before now."""
    return (now or utcnow()) - timedelta(minutes=minutes, seconds=seconds)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string with an explicit UTC marker, or None."""
    if value is None:
        return None
    return value.replace(tzinfo=UTC).isoformat()
