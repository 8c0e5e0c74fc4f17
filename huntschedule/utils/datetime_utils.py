"""
Datetime utility functions.
"""

from datetime import datetime, time
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def isoformat_or_none(value) -> Optional[str]:
    """Return value.isoformat() or None for missing dates/times."""
    return value.isoformat() if value is not None else None


def minutes_of_day(value: time) -> int:
    """Minutes elapsed since midnight for a time value."""
    return value.hour * 60 + value.minute


def slot_duration_minutes(start: time, end: time) -> int:
    """
    Length of a time slot in minutes.

    Slots whose end is earlier than their start run overnight, e.g.
    22:00-02:00 is 240 minutes.

    Raises:
        ValueError: If start and end are equal
    """
    start_minutes = minutes_of_day(start)
    end_minutes = minutes_of_day(end)
    if start_minutes == end_minutes:
        raise ValueError("Slot start and end times must differ")
    if end_minutes < start_minutes:
        end_minutes += 24 * 60
    return end_minutes - start_minutes
