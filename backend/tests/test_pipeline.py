"""
End-to-end detection runs over a synthetic market.

BTC trades hourly as a seeded random walk; COIN gaps follow 0.9x the BTC
off-session move plus small noise; SPY gaps are pure noise. The last
off-session window before `AS_OF` is a steady sell-off, so the run always
produces a strong-down BTC prediction.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import numpy as np
import pytest

from crossmarket.config import settings
from crossmarket.db.models import CombinedAlert, CorrelationPattern, DriverPrice, JobRun, TargetPrice
from crossmarket.db.repositories import PredictionRepository
from crossmarket.domain.market import PricePoint
from crossmarket.domain.predictions import ADMITTED, STRONG_DOWN
from crossmarket.services.correlation_engine import CorrelationEngine
from crossmarket.services.detectors import NewsItem
from crossmarket.services.job_tracker import FAILED, JobTracker
from crossmarket.services.pipeline import DetectionPipeline
from crossmarket.services.session_aligner import SessionAligner
from crossmarket.services.session_calendar import SessionCalendar

START = datetime(2024, 11, 1, 0, 0)
LAST_CLOSE = datetime(2025, 3, 3, 21, 0)
AS_OF = datetime(2025, 3, 4, 12, 0)


@pytest.fixture
def market_calendar():
    return SessionCalendar(holidays=[])


@pytest.fixture
def aligner():
    return SessionAligner(tolerance_days=1, max_gap_hours=12)


@pytest.fixture(autouse=True)
def universe(monkeypatch):
    monkeypatch.setattr(settings, "driver_symbols", ["BTC"])
    monkeypatch.setattr(settings, "target_baskets", {"BTC": ["COIN", "SPY"]})


def btc_series():
    rng = np.random.default_rng(11)
    points = []
    price = 60000.0
    ts = START
    while ts <= AS_OF:
        if ts <= LAST_CLOSE:
            price *= float(np.exp(0.005 * rng.standard_normal()))
        else:
            price *= 0.995
        points.append(PricePoint(symbol="BTC", timestamp=ts, price=price))
        ts += timedelta(hours=1)
    return points


@pytest.fixture
def seeded_market(db_session, market_calendar, aligner):
    series = btc_series()
    db_session.add_all([
        DriverPrice(symbol=p.symbol, timestamp=p.timestamp, price=p.price, source="test") for p in series
    ])

    rng = np.random.default_rng(5)
    for window in aligner.align(series, market_calendar):
        if window.target_session_date >= AS_OF.date():
            continue
        coin_gap = 0.9 * window.move_pct + 0.2 * rng.standard_normal()
        spy_gap = rng.standard_normal()
        db_session.add(TargetPrice(symbol="COIN", session_date=window.target_session_date,
                                   open=100.0 + coin_gap, prior_close=100.0))
        db_session.add(TargetPrice(symbol="SPY", session_date=window.target_session_date,
                                   open=100.0 + spy_gap, prior_close=100.0))
    db_session.commit()
    return series


def make_pipeline(session_factory, market_calendar, aligner, **kwargs):
    return DetectionPipeline(
        session_factory=session_factory,
        calendar=market_calendar,
        aligner=aligner,
        engine=CorrelationEngine(min_sample_size=30, min_abs_coefficient=0.3, min_directional_accuracy=60.0),
        tracker=JobTracker(session_factory),
        **kwargs,
    )


class TestDetectionRun:
    """Tests for DetectionPipeline.run."""

    def test_full_run(self, seeded_market, session_factory, db_session, market_calendar, aligner):
        stats = make_pipeline(session_factory, market_calendar, aligner).run(AS_OF)

        assert stats["pairs_evaluated"] == 2
        assert stats["pairs_failed"] == 0
        assert stats["patterns_admitted"] >= 1
        assert stats["predictions"] == 1

        coin = db_session.query(CorrelationPattern).filter_by(driver_symbol="BTC", target_symbol="COIN").one()
        assert coin.status == ADMITTED
        assert coin.is_active
        assert coin.coefficient > 0.8
        assert coin.sample_size >= 30

        repo = PredictionRepository(db_session)
        assert repo.current_generation_id() == stats["generation_id"]
        current = repo.list_current()
        assert len(current) == 1
        prediction = current[0]
        assert prediction.driver_symbol == "BTC"
        assert prediction.predicted_direction == STRONG_DOWN
        assert prediction.target_session_date == AS_OF.date()
        assert "COIN" in [f["ticker"] for f in prediction.per_ticker_forecasts]

        run = db_session.query(JobRun).filter_by(job_name="run_detection").one()
        assert run.status == "completed"
        assert run.items_processed == 1

    def test_rerun_creates_new_generation(self, seeded_market, session_factory, db_session, market_calendar, aligner):
        first = make_pipeline(session_factory, market_calendar, aligner).run(AS_OF)
        second = make_pipeline(session_factory, market_calendar, aligner).run(AS_OF)

        assert second["generation_id"] != first["generation_id"]
        assert PredictionRepository(db_session).current_generation_id() == second["generation_id"]
        # Re-evaluation refreshes patterns in place
        assert db_session.query(CorrelationPattern).count() == 2

    def test_agreeing_news_produces_combined_alert(
        self, seeded_market, session_factory, db_session, market_calendar, aligner
    ):
        news = [
            NewsItem(id="n1", title="Exchange hack drains hot wallet", tickers=["COIN"]),
            NewsItem(id="n2", title="Regulators open investigation"),
            NewsItem(id="n3", title="Withdrawals suspended"),
        ]
        pipeline = make_pipeline(session_factory, market_calendar, aligner, news_source=lambda: news)

        stats = pipeline.run(AS_OF)

        assert stats["alerts"] == 1
        alert = db_session.query(CombinedAlert).one()
        assert alert.generation_id == stats["generation_id"]
        assert alert.direction == -1
        assert alert.confidence <= 0.95

    def test_news_failure_does_not_abort_run(self, seeded_market, session_factory, market_calendar, aligner):
        def broken_news():
            raise ConnectionError("news down")

        stats = make_pipeline(session_factory, market_calendar, aligner, news_source=broken_news).run(AS_OF)

        assert stats["predictions"] == 1
        assert stats["alerts"] == 0

    def test_failed_run_keeps_previous_generation(
        self, seeded_market, session_factory, db_session, market_calendar, aligner
    ):
        first = make_pipeline(session_factory, market_calendar, aligner).run(AS_OF)

        generator = MagicMock()
        generator.generate.side_effect = RuntimeError("generator crashed")
        with pytest.raises(RuntimeError):
            make_pipeline(session_factory, market_calendar, aligner, generator=generator).run(AS_OF)

        assert PredictionRepository(db_session).current_generation_id() == first["generation_id"]
        runs = db_session.query(JobRun).order_by(JobRun.id).all()
        assert runs[-1].status == FAILED

    def test_no_driver_data_keeps_generation(self, session_factory, market_calendar, aligner):
        stats = make_pipeline(session_factory, market_calendar, aligner).run(AS_OF)

        assert stats["predictions"] == 0
        assert stats["generation_id"] is None
        assert stats["pairs_evaluated"] == 2
        assert stats["patterns_admitted"] == 0
