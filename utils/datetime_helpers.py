"""
Datetime helper utilities to ensure consistent timezone handling across the application.

All schema columns are timezone-naive and hold UTC. Use these helpers instead of
datetime.now() so that values written and values compared agree.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def ensure_naive_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert timezone-aware datetime to naive UTC datetime.

    Example:
        >>> aware_dt = datetime.now(timezone.utc)
        >>> naive_dt = ensure_naive_datetime(aware_dt)
        >>> assert naive_dt.tzinfo is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)

    return dt


def get_naive_utc_now() -> datetime:
    """Current UTC time as naive datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hours_from_now(hours: int, now: Optional[datetime] = None) -> datetime:
    return (ensure_naive_datetime(now) or get_naive_utc_now()) + timedelta(hours=hours)
