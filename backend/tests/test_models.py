"""
Tests that patterns and predictions reload from storage with every column intact.
"""

from datetime import date, datetime

import pytest

from crossmarket.db.models import CorrelationPattern, Prediction
from crossmarket.domain.predictions import ADMITTED, PENDING, VALIDATED, PatternView


def columns(row):
    return {c.key: getattr(row, c.key) for c in row.__table__.columns}


def reload(session_factory, model, row_id):
    db = session_factory()
    try:
        return columns(db.get(model, row_id))
    finally:
        db.close()


@pytest.fixture
def stored_pattern(session_factory):
    db = session_factory()
    try:
        pattern = CorrelationPattern(
            driver_symbol="BTC",
            target_symbol="COIN",
            coefficient=0.7234,
            sample_size=52,
            accuracy_rate=67.3076923,
            avg_driver_move=-1.125,
            avg_target_move=-0.8125,
            pair_count=48,
            directional_accuracy=66.6666667,
            status=ADMITTED,
            is_active=True,
            oracle_verdict=None,
            description="BTC off-session moves vs COIN opening gap",
            created_at=datetime(2025, 3, 1, 13, 45),
            last_updated=datetime(2025, 3, 3, 14, 0),
        )
        db.add(pattern)
        db.commit()
        expected = columns(pattern)
    finally:
        db.close()
    return expected


class TestPatternRoundTrip:
    def test_every_column_survives(self, session_factory, stored_pattern):
        assert reload(session_factory, CorrelationPattern, stored_pattern["id"]) == stored_pattern

    def test_view_matches_row(self, session_factory, stored_pattern):
        db = session_factory()
        try:
            view = PatternView.model_validate(db.get(CorrelationPattern, stored_pattern["id"]))
        finally:
            db.close()

        dumped = view.model_dump()
        for key, value in dumped.items():
            assert value == stored_pattern[key], key


class TestPredictionRoundTrip:
    """Pending and validated predictions reload unchanged, JSON forecasts included."""

    FORECASTS = [
        {
            "ticker": "COIN",
            "predicted_change_pct": -5.704,
            "correlation_score": 0.92,
            "historical_accuracy": 71.4285714,
            "recommendation": "SHORT",
            "pattern_id": None,
        },
        {
            "ticker": "MSTR",
            "predicted_change_pct": -0.1,
            "correlation_score": 0.3333333333333333,
            "historical_accuracy": 60.5,
            "recommendation": "WATCH",
            "pattern_id": 7,
        },
    ]

    def _store(self, session_factory, **overrides):
        db = session_factory()
        try:
            prediction = Prediction(
                driver_symbol="BTC",
                target_symbol="COIN",
                target_session_date=date(2025, 3, 4),
                driver_move_pct=-6.2,
                predicted_direction="strong_down",
                confidence=0.85,
                per_ticker_forecasts=self.FORECASTS,
                created_at=datetime(2025, 3, 4, 12, 0),
                **overrides,
            )
            db.add(prediction)
            db.commit()
            expected = columns(prediction)
        finally:
            db.close()
        return expected

    def test_pending_prediction(self, session_factory):
        expected = self._store(session_factory, status=PENDING)

        loaded = reload(session_factory, Prediction, expected["id"])

        assert loaded == expected
        assert loaded["actual_outcome"] is None
        assert loaded["direction_correct"] is None
        assert loaded["ticker_accuracy"] is None
        assert loaded["per_ticker_forecasts"] == self.FORECASTS

    def test_validated_prediction(self, session_factory):
        expected = self._store(
            session_factory,
            status=VALIDATED,
            actual_outcome=-4.0,
            direction_correct=False,
            ticker_accuracy=50.0,
            validated_at=datetime(2025, 3, 4, 21, 30),
        )

        loaded = reload(session_factory, Prediction, expected["id"])

        assert loaded == expected
        assert loaded["direction_correct"] is False
        assert loaded["actual_outcome"] == -4.0
        assert loaded["per_ticker_forecasts"][1]["correlation_score"] == 0.3333333333333333
