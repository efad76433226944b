"""
Session alignment between a continuous driver series and a session-traded target.

The driver's off-session window for a target session runs from the last driver
observation at or before the previous session's close to the first driver
observation at or after the session's open. Windows are never interpolated:
a window whose boundary observations are too far from the session edges, or
that contains a hole in the driver data, is dropped.
"""

from bisect import bisect_left, bisect_right
from datetime import date, datetime, timedelta
from typing import Any, List, Mapping, Optional, Sequence

from loguru import logger

from crossmarket.config import settings
from crossmarket.domain.market import MovePair, PricePoint, SessionWindow
from crossmarket.services.session_calendar import SessionCalendar
from crossmarket.utils.datetime import to_naive_utc, utc_to_market_date


class SessionAligner:
    """Turns driver observations into session-matched off-session windows."""

    def __init__(
        self,
        tolerance_days: Optional[float] = None,
        max_gap_hours: Optional[float] = None,
    ):
        self.tolerance = timedelta(days=settings.match_tolerance_days if tolerance_days is None else tolerance_days)
        self.max_gap = timedelta(hours=settings.max_observation_gap_hours if max_gap_hours is None else max_gap_hours)

    def align(self, driver_series: Sequence[PricePoint], calendar: SessionCalendar) -> List[SessionWindow]:
        """
        Build one window per target session covered by the series.

        Args:
            driver_series: Driver observations for a single symbol (any order)
            calendar: Target session calendar (source of opens, closes and holidays)

        Returns:
            Windows ascending by target session date, at most one per session
        """
        series = _sorted_unique(driver_series)
        if len(series) < 2:
            return []

        timestamps = [p.timestamp for p in series]
        first_day = utc_to_market_date(timestamps[0], calendar.timezone)
        last_day = utc_to_market_date(timestamps[-1], calendar.timezone)

        windows: List[SessionWindow] = []
        skipped = 0
        for session in calendar.sessions_between(first_day, last_day + timedelta(days=1)):
            previous = calendar.previous_session(session.session_date)
            window = self._window(series, timestamps, previous.close_at, session.open_at, session.session_date)
            if window is None:
                skipped += 1
                continue
            windows.append(window)

        logger.debug(
            f"Aligned {series[0].symbol}: {len(windows)} windows, {skipped} sessions without a valid window"
        )
        return windows

    def pair_moves(self, windows: Sequence[SessionWindow], target_prices: Mapping[date, Any]) -> List[MovePair]:
        """
        Join windows with the target's gap move (open vs prior close) for the same session.

        `target_prices` maps session date to anything exposing `gap_pct`
        (ORM rows or TargetSessionPrice). Sessions without target data are skipped.
        """
        pairs = []
        for window in windows:
            target = target_prices.get(window.target_session_date)
            gap = getattr(target, "gap_pct", None) if target is not None else None
            if gap is None:
                continue
            pairs.append(MovePair(
                session_date=window.target_session_date,
                driver_move_pct=window.move_pct,
                target_move_pct=gap,
            ))
        return pairs

    def current_move(
        self,
        driver_series: Sequence[PricePoint],
        calendar: SessionCalendar,
        as_of: datetime,
    ) -> Optional[SessionWindow]:
        """
        The in-progress off-session move: last target close up to the latest observation.

        The window is attributed to the first session opening after `as_of`.
        Returns None when the data is stale, has holes, or does not cover the close.
        """
        as_of = to_naive_utc(as_of)
        series = [p for p in _sorted_unique(driver_series) if p.timestamp <= as_of]
        if len(series) < 2:
            return None

        timestamps = [p.timestamp for p in series]
        last_close = calendar.last_close_before(as_of)
        upcoming = calendar.next_session_after(as_of)

        start_idx = bisect_right(timestamps, last_close.close_at) - 1
        end_idx = len(series) - 1
        if start_idx < 0 or start_idx >= end_idx:
            return None
        if last_close.close_at - timestamps[start_idx] > self.tolerance:
            return None
        if as_of - timestamps[end_idx] > self.tolerance:
            return None
        if self._has_gap(timestamps, start_idx, end_idx):
            return None

        return SessionWindow(
            driver_symbol=series[0].symbol,
            driver_window_start=timestamps[start_idx],
            driver_window_end=timestamps[end_idx],
            target_session_date=upcoming.session_date,
            start_price=series[start_idx].price,
            end_price=series[end_idx].price,
        )

    def _window(
        self,
        series: List[PricePoint],
        timestamps: List[datetime],
        close_at: datetime,
        open_at: datetime,
        session_date: date,
    ) -> Optional[SessionWindow]:
        start_idx = bisect_right(timestamps, close_at) - 1
        end_idx = bisect_left(timestamps, open_at)
        if start_idx < 0 or end_idx >= len(series) or start_idx >= end_idx:
            return None

        if timestamps[end_idx] - open_at > self.tolerance:
            return None
        if close_at - timestamps[start_idx] > self.tolerance:
            return None
        if self._has_gap(timestamps, start_idx, end_idx):
            return None

        return SessionWindow(
            driver_symbol=series[0].symbol,
            driver_window_start=timestamps[start_idx],
            driver_window_end=timestamps[end_idx],
            target_session_date=session_date,
            start_price=series[start_idx].price,
            end_price=series[end_idx].price,
        )

    def _has_gap(self, timestamps: List[datetime], start_idx: int, end_idx: int) -> bool:
        for i in range(start_idx + 1, end_idx + 1):
            if timestamps[i] - timestamps[i - 1] > self.max_gap:
                return True
        return False


def _sorted_unique(series: Sequence[PricePoint]) -> List[PricePoint]:
    """Sort by timestamp, keeping the first observation per timestamp."""
    seen = set()
    result = []
    for point in sorted(series, key=lambda p: p.timestamp):
        if point.timestamp in seen:
            continue
        seen.add(point.timestamp)
        result.append(point)
    return result
