"""
Target-market session calendar.

Default implementation models an NYSE-style exchange: a single regular
session per weekday in the exchange timezone, with full-day holidays taken
from an explicit list. A day with no target data is never treated as a
holiday; only the configured list closes the market.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional

import pytz

from crossmarket.config import settings
from crossmarket.domain.market import TargetSession
from crossmarket.utils.datetime import market_time_to_utc, to_naive_utc, utc_to_market_date
from crossmarket.utils.errors import CalendarError

# Upper bound on the search for the next/previous open day
MAX_CLOSED_RUN_DAYS = 14

CLOSED = "closed"
PRE_OPEN = "pre_open"
MARKET_HOURS = "market_hours"
AFTER_HOURS = "after_hours"
PRE_CLOSURE = "pre_closure"


class SessionCalendar:
    """Regular-hours calendar for the target market. All returned timestamps are naive UTC."""

    def __init__(
        self,
        timezone: Optional[str] = None,
        open_time: Optional[time] = None,
        close_time: Optional[time] = None,
        holidays: Optional[Iterable[date]] = None,
    ):
        self.timezone = timezone or settings.session_timezone
        self.open_time = open_time or settings.session_open
        self.close_time = close_time or settings.session_close
        self.holidays = frozenset(settings.market_holidays if holidays is None else holidays)

        try:
            pytz.timezone(self.timezone)
        except pytz.UnknownTimeZoneError as e:
            raise CalendarError(f"Unknown session timezone: {self.timezone}") from e

        if self.close_time <= self.open_time:
            raise CalendarError(
                "Session close must be after session open",
                details={"open": str(self.open_time), "close": str(self.close_time)},
            )

    def is_trading_day(self, day: date) -> bool:
        return day.weekday() < 5 and day not in self.holidays

    def session_for(self, day: date) -> TargetSession:
        """Session on a trading day; raises CalendarError for closed days."""
        if not self.is_trading_day(day):
            raise CalendarError(f"Market closed on {day.isoformat()}")
        return TargetSession(
            session_date=day,
            open_at=market_time_to_utc(day, self.open_time, self.timezone),
            close_at=market_time_to_utc(day, self.close_time, self.timezone),
        )

    def sessions_between(self, start: date, end: date) -> List[TargetSession]:
        """All sessions with start <= session_date <= end, ascending."""
        sessions = []
        day = start
        while day <= end:
            if self.is_trading_day(day):
                sessions.append(self.session_for(day))
            day += timedelta(days=1)
        return sessions

    def previous_session(self, day: date) -> TargetSession:
        """The last session strictly before `day`."""
        return self.session_for(self._step(day, -1))

    def next_session(self, day: date) -> TargetSession:
        """The first session strictly after `day`."""
        return self.session_for(self._step(day, 1))

    def next_session_after(self, timestamp: datetime) -> TargetSession:
        """The first session whose open is strictly after `timestamp`."""
        ts = to_naive_utc(timestamp)
        day = utc_to_market_date(ts, self.timezone)
        if self.is_trading_day(day):
            session = self.session_for(day)
            if session.open_at > ts:
                return session
        return self.next_session(day)

    def last_close_before(self, timestamp: datetime) -> TargetSession:
        """The most recent session whose close is at or before `timestamp`."""
        ts = to_naive_utc(timestamp)
        day = utc_to_market_date(ts, self.timezone)
        if self.is_trading_day(day):
            session = self.session_for(day)
            if session.close_at <= ts:
                return session
        return self.previous_session(day)

    def is_market_hours(self, timestamp: datetime) -> bool:
        return self.market_phase(timestamp) == MARKET_HOURS

    def market_phase(self, timestamp: datetime) -> str:
        """
        Where `timestamp` falls relative to the target market's sessions.

        closed       - non-trading day (weekend or holiday)
        pre_open     - trading day, before the open
        market_hours - inside the regular session
        after_hours  - after the close, next day trades
        pre_closure  - after the close, next day is closed (driver moves accumulate)
        """
        ts = to_naive_utc(timestamp)
        day = utc_to_market_date(ts, self.timezone)
        if not self.is_trading_day(day):
            return CLOSED
        session = self.session_for(day)
        if ts < session.open_at:
            return PRE_OPEN
        if ts < session.close_at:
            return MARKET_HOURS
        if not self.is_trading_day(day + timedelta(days=1)):
            return PRE_CLOSURE
        return AFTER_HOURS

    def _step(self, day: date, direction: int) -> date:
        candidate = day
        for _ in range(MAX_CLOSED_RUN_DAYS):
            candidate += timedelta(days=direction)
            if self.is_trading_day(candidate):
                return candidate
        raise CalendarError(
            f"No trading day within {MAX_CLOSED_RUN_DAYS} days of {day.isoformat()}"
        )
