"""
Clock helpers. Timestamps are stored as naive UTC.
"""
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def days_from_now(days: float) -> datetime:
    return utcnow() + timedelta(days=days)


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600
