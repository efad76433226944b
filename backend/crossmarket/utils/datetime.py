"""
Centralized datetime and timezone utilities for CrossMarket Radar.

All persisted timestamps are naive UTC. Conversions to and from the target
market's wall clock go through pytz so DST transitions are handled by the
timezone database rather than by hand.
"""

from datetime import date, datetime, time, timezone
from typing import Any, Optional

import pytz


def utc_now() -> datetime:
    """Return the current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """
    Normalise a datetime to naive UTC.

    Naive inputs are assumed to already be UTC; aware inputs are converted.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def market_time_to_utc(day: date, wall_time: time, tz_name: str) -> datetime:
    """
    Convert a market wall-clock time on a given day to naive UTC.

    Examples:
        >>> market_time_to_utc(date(2025, 1, 6), time(9, 30), "America/New_York")
        datetime.datetime(2025, 1, 6, 14, 30)
        >>> market_time_to_utc(date(2025, 7, 7), time(9, 30), "America/New_York")
        datetime.datetime(2025, 7, 7, 13, 30)
    """
    tz = pytz.timezone(tz_name)
    local = tz.localize(datetime.combine(day, wall_time))
    return local.astimezone(pytz.utc).replace(tzinfo=None)


def utc_to_market_date(value: datetime, tz_name: str) -> date:
    """Return the market-local calendar date of a (naive UTC) timestamp."""
    aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return aware.astimezone(pytz.timezone(tz_name)).date()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse ISO strings, epoch seconds/milliseconds or datetimes into naive UTC.

    Returns None for values that cannot be interpreted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e12 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    if isinstance(value, str):
        try:
            return to_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None
