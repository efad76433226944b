"""
Tests for the session calendar and the off-session window aligner.

All timestamps are naive UTC; January 2025 sessions run 14:30-21:00 UTC.
"""

from datetime import date, datetime, time, timedelta

import pytest

from crossmarket.domain.market import PricePoint, TargetSessionPrice
from crossmarket.services.session_aligner import SessionAligner
from crossmarket.services.session_calendar import SessionCalendar
from crossmarket.utils.errors import CalendarError


def hourly_series(start, end, symbol="BTC", base=100.0, step=0.1, skip=None):
    """Hourly observations in [start, end), price rising by `step` each hour."""
    points = []
    ts = start
    i = 0
    while ts < end:
        if not (skip and skip[0] <= ts < skip[1]):
            points.append(PricePoint(symbol=symbol, timestamp=ts, price=base + i * step))
        ts += timedelta(hours=1)
        i += 1
    return points


class TestSessionCalendar:
    """Tests for SessionCalendar."""

    def test_session_times_are_utc(self, calendar):
        session = calendar.session_for(date(2025, 1, 14))
        assert session.open_at == datetime(2025, 1, 14, 14, 30)
        assert session.close_at == datetime(2025, 1, 14, 21, 0)

    def test_dst_shifts_utc_open(self):
        session = SessionCalendar(holidays=[]).session_for(date(2025, 7, 8))
        assert session.open_at == datetime(2025, 7, 8, 13, 30)

    def test_weekends_and_holidays_closed(self, calendar):
        assert calendar.is_trading_day(date(2025, 1, 17))
        assert not calendar.is_trading_day(date(2025, 1, 18))
        assert not calendar.is_trading_day(date(2025, 1, 20))
        with pytest.raises(CalendarError):
            calendar.session_for(date(2025, 1, 20))

    def test_next_session_skips_weekend_and_holiday(self, calendar):
        assert calendar.next_session(date(2025, 1, 17)).session_date == date(2025, 1, 21)
        assert calendar.previous_session(date(2025, 1, 21)).session_date == date(2025, 1, 17)

    def test_next_session_after_timestamp(self, calendar):
        before_open = datetime(2025, 1, 14, 12, 0)
        after_open = datetime(2025, 1, 14, 15, 0)
        assert calendar.next_session_after(before_open).session_date == date(2025, 1, 14)
        assert calendar.next_session_after(after_open).session_date == date(2025, 1, 15)

    def test_sessions_between(self, calendar):
        sessions = calendar.sessions_between(date(2025, 1, 16), date(2025, 1, 22))
        assert [s.session_date for s in sessions] == [
            date(2025, 1, 16), date(2025, 1, 17), date(2025, 1, 21), date(2025, 1, 22),
        ]

    @pytest.mark.parametrize("timestamp, phase", [
        (datetime(2025, 1, 14, 13, 0), "pre_open"),
        (datetime(2025, 1, 14, 15, 0), "market_hours"),
        (datetime(2025, 1, 14, 22, 0), "after_hours"),
        # 22:00 ET on the 13th
        (datetime(2025, 1, 14, 3, 0), "after_hours"),
        (datetime(2025, 1, 17, 22, 0), "pre_closure"),
        (datetime(2025, 1, 8, 22, 0), "pre_closure"),
        (datetime(2025, 1, 18, 15, 0), "closed"),
        (datetime(2025, 1, 20, 15, 0), "closed"),
    ])
    def test_market_phase(self, calendar, timestamp, phase):
        assert calendar.market_phase(timestamp) == phase
        assert calendar.is_market_hours(timestamp) == (phase == "market_hours")

    def test_invalid_hours_rejected(self):
        with pytest.raises(CalendarError):
            SessionCalendar(open_time=time(16, 0), close_time=time(9, 30), holidays=[])


class TestAlign:
    """Tests for SessionAligner.align."""

    START = datetime(2025, 1, 13, 0, 0)
    END = datetime(2025, 1, 25, 0, 0)

    def test_one_window_per_session_ascending(self, calendar):
        series = hourly_series(self.START, self.END)
        windows = SessionAligner(tolerance_days=1, max_gap_hours=12).align(series, calendar)

        dates = [w.target_session_date for w in windows]
        # Jan 13 has no observation before the Jan 10 close; Jan 20 is a holiday
        assert dates == [
            date(2025, 1, 14), date(2025, 1, 15), date(2025, 1, 16), date(2025, 1, 17),
            date(2025, 1, 21), date(2025, 1, 22), date(2025, 1, 23), date(2025, 1, 24),
        ]
        assert len(dates) == len(set(dates))

    def test_window_boundaries(self, calendar):
        series = hourly_series(self.START, self.END)
        windows = SessionAligner(tolerance_days=1, max_gap_hours=12).align(series, calendar)
        tuesday = windows[0]

        assert tuesday.driver_window_start == datetime(2025, 1, 13, 21, 0)
        assert tuesday.driver_window_end == datetime(2025, 1, 14, 15, 0)
        assert tuesday.driver_window_end - datetime(2025, 1, 14, 14, 30) <= timedelta(days=1)

        after_holiday = [w for w in windows if w.target_session_date == date(2025, 1, 21)][0]
        assert after_holiday.driver_window_start == datetime(2025, 1, 17, 21, 0)
        assert after_holiday.driver_window_end == datetime(2025, 1, 21, 15, 0)

    def test_move_pct(self, calendar):
        series = hourly_series(self.START, self.END, base=100.0, step=0.0)
        windows = SessionAligner(tolerance_days=1, max_gap_hours=12).align(series, calendar)
        assert all(w.move_pct == 0.0 for w in windows)

    def test_gap_inside_window_skips_it(self, calendar):
        skip = (datetime(2025, 1, 15, 22, 0), datetime(2025, 1, 16, 12, 0))
        series = hourly_series(self.START, self.END, skip=skip)
        windows = SessionAligner(tolerance_days=1, max_gap_hours=12).align(series, calendar)

        dates = [w.target_session_date for w in windows]
        assert date(2025, 1, 16) not in dates
        assert date(2025, 1, 15) in dates
        assert date(2025, 1, 17) in dates

    def test_end_beyond_tolerance_not_matched(self, calendar):
        # Nothing between Jan 16 10:00 and Jan 17 20:00; the first observation after
        # the Jan 16 open is 29.5 hours late
        skip = (datetime(2025, 1, 16, 10, 0), datetime(2025, 1, 17, 20, 0))
        series = hourly_series(self.START, self.END, skip=skip)
        windows = SessionAligner(tolerance_days=1, max_gap_hours=1000).align(series, calendar)

        assert date(2025, 1, 16) not in [w.target_session_date for w in windows]

    def test_unsorted_duplicates_do_not_duplicate_windows(self, calendar):
        series = hourly_series(self.START, self.END)
        shuffled = list(reversed(series)) + series[:50]
        aligner = SessionAligner(tolerance_days=1, max_gap_hours=12)
        assert aligner.align(shuffled, calendar) == aligner.align(series, calendar)

    def test_short_series(self, calendar):
        assert SessionAligner().align([], calendar) == []


class TestPairMovesAndCurrentMove:
    """Tests for pairing with target gaps and the in-progress move."""

    def test_pair_moves_skips_sessions_without_target_data(self, calendar):
        series = hourly_series(datetime(2025, 1, 13), datetime(2025, 1, 18))
        aligner = SessionAligner(tolerance_days=1, max_gap_hours=12)
        windows = aligner.align(series, calendar)
        targets = {
            date(2025, 1, 14): TargetSessionPrice(symbol="COIN", session_date=date(2025, 1, 14),
                                                  open=102.0, prior_close=100.0),
            date(2025, 1, 15): TargetSessionPrice(symbol="COIN", session_date=date(2025, 1, 15), open=99.0),
        }

        pairs = aligner.pair_moves(windows, targets)

        assert len(pairs) == 1
        assert pairs[0].session_date == date(2025, 1, 14)
        assert pairs[0].target_move_pct == pytest.approx(2.0)
        assert pairs[0].driver_move_pct == pytest.approx(windows[0].move_pct)

    def test_current_move_before_open(self, calendar):
        series = hourly_series(datetime(2025, 1, 20), datetime(2025, 1, 22, 13, 0))
        as_of = datetime(2025, 1, 22, 12, 0)

        move = SessionAligner(tolerance_days=1, max_gap_hours=12).current_move(series, calendar, as_of)

        assert move is not None
        assert move.driver_window_start == datetime(2025, 1, 21, 21, 0)
        assert move.driver_window_end == as_of
        assert move.target_session_date == date(2025, 1, 22)

    def test_current_move_stale_data(self, calendar):
        series = hourly_series(datetime(2025, 1, 20), datetime(2025, 1, 21, 22, 0))
        as_of = datetime(2025, 1, 23, 12, 0)
        assert SessionAligner(tolerance_days=1).current_move(series, calendar, as_of) is None
