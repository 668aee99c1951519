"""
Timezone-aware datetime utilities for the campaign autopilot.

All functions return timezone-aware datetime objects. Values coming back from
the database are normalised through ensure_utc() because SQLite drops tzinfo.
"""

import calendar
from datetime import datetime, timezone, timedelta
from typing import Optional
import pytz


SEASONS = {
    12: 'winter', 1: 'winter', 2: 'winter',
    3: 'spring', 4: 'spring', 5: 'spring',
    6: 'summer', 7: 'summer', 8: 'summer',
    9: 'fall', 10: 'fall', 11: 'fall',
}


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime object is timezone-aware and in UTC.

    If the datetime is naive (no timezone), it assumes UTC.
    If the datetime has a different timezone, it converts to UTC.

    Args:
        dt: Datetime object (may be naive or timezone-aware)

    Returns:
        datetime: Timezone-aware datetime in UTC, or None when dt is None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    if dt.tzinfo != timezone.utc:
        return dt.astimezone(timezone.utc)
    return dt


def utc_to_local(dt: datetime, local_tz: str = 'UTC') -> datetime:
    """
    Convert a UTC datetime to a local timezone.

    Args:
        dt: UTC datetime (naive values are treated as UTC)
        local_tz: Target timezone name

    Returns:
        datetime: Datetime in the specified local timezone
    """
    return ensure_utc(dt).astimezone(pytz.timezone(local_tz))


def local_to_utc(dt: datetime, local_tz: str = 'UTC') -> datetime:
    """
    Convert a local datetime to UTC.

    Args:
        dt: Local datetime (may be naive or timezone-aware)
        local_tz: Source timezone name if dt is naive

    Returns:
        datetime: Timezone-aware datetime in UTC
    """
    if dt.tzinfo is None:
        local_dt = pytz.timezone(local_tz).localize(dt)
        return local_dt.astimezone(timezone.utc)
    return dt.astimezone(timezone.utc)


def next_weekday_occurrence(now: datetime, day_of_week: int, hour: int,
                            local_tz: str = 'UTC') -> datetime:
    """
    Next instant strictly after `now` that falls on the given local weekday/hour.

    Args:
        now: Reference time
        day_of_week: 0=Monday ... 6=Sunday
        hour: Local hour 0-23
        local_tz: Timezone the weekday/hour are expressed in

    Returns:
        datetime: Timezone-aware UTC datetime
    """
    local_now = utc_to_local(now, local_tz)
    days_ahead = (day_of_week - local_now.weekday()) % 7
    candidate_date = local_now.date() + timedelta(days=days_ahead)
    candidate = local_to_utc(
        datetime(candidate_date.year, candidate_date.month, candidate_date.day, hour),
        local_tz
    )
    if candidate <= ensure_utc(now):
        next_date = candidate_date + timedelta(days=7)
        candidate = local_to_utc(
            datetime(next_date.year, next_date.month, next_date.day, hour),
            local_tz
        )
    return candidate


def add_months(dt: datetime, months: int = 1) -> datetime:
    """Add calendar months, clamping the day to the end of shorter months."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def season_for(dt: datetime) -> str:
    """Northern-hemisphere meteorological season for a date."""
    return SEASONS[dt.month]
