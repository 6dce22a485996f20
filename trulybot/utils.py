import math
from datetime import datetime, timedelta, timezone
from typing import Optional

DAY_MS = 24 * 60 * 60 * 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def millis_between(start: datetime, end: datetime) -> int:
    return (as_utc(end) - as_utc(start)) // timedelta(milliseconds=1)


def days_until(ends_at: datetime, now: datetime) -> int:
    """Whole days left, rounded up; 0 once `ends_at` is reached."""
    remaining = millis_between(now, ends_at)
    if remaining <= 0:
        return 0
    return math.ceil(remaining / DAY_MS)


def from_unix(ts: Optional[int]) -> Optional[datetime]:
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Normalize email by stripping spaces and lowercasing."""
    if not email:
        return None
    return email.strip().lower()
