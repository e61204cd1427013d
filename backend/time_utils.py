"""
Time utilities for the Task Sphere application.

This module provides a single source of truth for time operations,
ensuring consistency across all endpoints and preventing clock drift issues.
"""

from datetime import datetime, timezone, timedelta, date
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC.

    SQLite hands back naive datetimes even for timezone-aware columns;
    naive values are treated as already being in UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Stable ISO-8601 representation used when diffing dates."""
    normalized = as_utc(value)
    return normalized.isoformat() if normalized else None


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """
    Calculate the [start, end) UTC range covering a calendar day.

    Args:
        day: The calendar day

    Returns:
        Tuple of (start, end) as timezone-aware datetimes
    """
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)
