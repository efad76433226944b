"""
Tests for generation-tagged active prediction sets and their garbage collection.
"""

from datetime import date, datetime

import pytest

from crossmarket.db.models import CombinedAlert, Prediction, PredictionGeneration
from crossmarket.db.repositories import PredictionRepository
from crossmarket.db.session import transaction_scope
from crossmarket.domain.predictions import EXPIRED, PENDING, VALIDATED
from crossmarket.domain.signals import DOWN, CombinedAlertDraft, TickerImpact
from crossmarket.services.prediction_generator import PredictionGenerator
from crossmarket.utils.errors import DatabaseError


def fresh_prediction(move=-6.2, driver="BTC"):
    return PredictionGenerator(benchmark_symbol="SPY").generate(
        driver, move, [], target_session_date=date(2025, 3, 4), as_of=datetime(2025, 3, 4, 12, 0)
    )


def alert_draft():
    return CombinedAlertDraft(
        component_signal_ids=["crypto_correlation:1", "event_sentiment:n1:3"],
        direction=DOWN,
        severity="critical",
        confidence=0.8625,
        merged_ticker_forecasts=[TickerImpact(ticker="COIN", predicted_change=-4.0, correlation_strength=0.9)],
    )


def swap(session_factory, predictions, alerts=()):
    with transaction_scope(session_factory) as db:
        return PredictionRepository(db).replace_active_set(predictions, alerts).id


class TestReplaceActiveSet:
    """Tests for the generation swap."""

    def test_no_generation_before_first_swap(self, db_session):
        repo = PredictionRepository(db_session)
        assert repo.current_generation_id() is None
        assert repo.list_current() == []

    def test_swap_makes_new_set_current(self, session_factory, db_session):
        first = swap(session_factory, [fresh_prediction(-6.2), fresh_prediction(3.0, "ETH")], [alert_draft()])

        repo = PredictionRepository(db_session)
        assert repo.current_generation_id() == first
        current = repo.list_current()
        assert len(current) == 2
        # Highest confidence first
        assert current[0].confidence >= current[1].confidence
        alerts = db_session.query(CombinedAlert).all()
        assert len(alerts) == 1
        assert alerts[0].generation_id == first
        assert alerts[0].merged_forecasts[0]["ticker"] == "COIN"

    def test_second_swap_supersedes_first(self, session_factory, db_session):
        first = swap(session_factory, [fresh_prediction()])
        second = swap(session_factory, [fresh_prediction(4.0)])

        repo = PredictionRepository(db_session)
        assert second != first
        assert repo.current_generation_id() == second
        assert [p.driver_move_pct for p in repo.list_current()] == [4.0]
        # The replaced prediction for the same driver and session is archived
        statuses = [p.status for p in db_session.query(Prediction).order_by(Prediction.id)]
        assert statuses == [EXPIRED, PENDING]

    def test_swap_archives_only_same_driver_and_session(self, session_factory, db_session):
        swap(session_factory, [fresh_prediction(), fresh_prediction(3.0, "ETH")])
        swap(session_factory, [fresh_prediction(-2.5)])

        rows = {(p.driver_symbol, p.driver_move_pct): p for p in db_session.query(Prediction)}
        assert rows[("BTC", -6.2)].status == EXPIRED
        assert rows[("BTC", -6.2)].validated_at is not None
        assert rows[("ETH", 3.0)].status == PENDING
        assert rows[("BTC", -2.5)].status == PENDING

    def test_failed_swap_keeps_previous_generation(self, session_factory, db_session):
        first = swap(session_factory, [fresh_prediction()])

        with pytest.raises(DatabaseError):
            with transaction_scope(session_factory) as db:
                PredictionRepository(db).replace_active_set([fresh_prediction(9.0)])
                raise RuntimeError("crash before commit")

        repo = PredictionRepository(db_session)
        assert repo.current_generation_id() == first
        assert db_session.query(PredictionGeneration).count() == 1
        assert db_session.query(Prediction).count() == 1

    def test_list_current_filters_status(self, session_factory, db_session):
        generation = swap(session_factory, [fresh_prediction(), fresh_prediction(3.0, "ETH")])
        prediction = db_session.query(Prediction).filter(Prediction.generation_id == generation).first()
        prediction.status = VALIDATED
        db_session.commit()

        assert len(PredictionRepository(db_session).list_current(status=PENDING)) == 1


class TestCollectGarbage:
    """Tests for superseded generation cleanup."""

    def _terminate(self, db_session, generation_id, status=EXPIRED):
        for prediction in db_session.query(Prediction).filter(Prediction.generation_id == generation_id):
            prediction.status = status
        db_session.commit()

    def test_keeps_current_and_retained(self, session_factory, db_session):
        ids = [swap(session_factory, [fresh_prediction()]) for _ in range(4)]
        for generation_id in ids[:-1]:
            self._terminate(db_session, generation_id)

        with transaction_scope(session_factory) as db:
            removed = PredictionRepository(db).collect_garbage(retain=1)

        assert removed == 2
        db_session.expire_all()
        remaining = {g.id for g in db_session.query(PredictionGeneration).all()}
        assert remaining == {ids[2], ids[3]}
        # History survives with its generation tag cleared
        assert db_session.query(Prediction).count() == 4
        assert db_session.query(Prediction).filter(Prediction.generation_id.is_(None)).count() == 2

    def test_generation_with_pending_predictions_kept(self, session_factory, db_session):
        old = swap(session_factory, [fresh_prediction()], [alert_draft()])
        swap(session_factory, [fresh_prediction(3.0, "ETH")])

        with transaction_scope(session_factory) as db:
            assert PredictionRepository(db).collect_garbage(retain=0) == 0

        self._terminate(db_session, old, VALIDATED)
        with transaction_scope(session_factory) as db:
            assert PredictionRepository(db).collect_garbage(retain=0) == 1

        db_session.expire_all()
        assert db_session.query(CombinedAlert).one().generation_id is None

    def test_current_generation_never_collected(self, session_factory, db_session):
        current = swap(session_factory, [fresh_prediction()])
        self._terminate(db_session, current)

        with transaction_scope(session_factory) as db:
            assert PredictionRepository(db).collect_garbage(retain=0) == 0
