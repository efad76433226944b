"""
Validation Engine - closes the prediction loop.

A pending prediction is validated exactly once against the realized target
move, and its pattern's rolling accuracy is updated in the same transaction.
Predictions whose session never produces data are expired after a fixed
horizon without touching the catalog. Any other transition is rejected with
PredictionStateError.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from crossmarket.config import settings
from crossmarket.db.models import Prediction
from crossmarket.db.repositories import PredictionRepository, PriceRepository
from crossmarket.db.session import transaction_scope
from crossmarket.domain.predictions import EXPIRED, PENDING, VALIDATED
from crossmarket.services.pattern_catalog import PatternCatalog
from crossmarket.services.prediction_generator import direction_sign
from crossmarket.services.session_calendar import SessionCalendar
from crossmarket.utils.datetime import to_naive_utc, utc_now
from crossmarket.utils.errors import (
    CalendarError,
    ConcurrentUpdateError,
    PredictionStateError,
)


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def ticker_accuracy(forecasts: List[Dict[str, Any]], ticker_outcomes: Mapping[str, Optional[float]]) -> Optional[float]:
    """
    Percentage of forecasts whose sign matched the realized move.

    Tickers without realized data are left out of the denominator. Returns
    None when no forecast ticker has data.
    """
    matched = 0
    counted = 0
    for forecast in forecasts:
        outcome = ticker_outcomes.get(forecast["ticker"])
        if outcome is None:
            continue
        counted += 1
        if _sign(forecast["predicted_change_pct"]) == _sign(outcome):
            matched += 1
    if counted == 0:
        return None
    return matched / counted * 100.0


class ValidationEngine:
    """Single-prediction state transitions inside the caller's transaction."""

    def __init__(self, db: Session):
        self.db = db
        self.predictions = PredictionRepository(db)
        self.catalog = PatternCatalog(db)

    def validate(
        self,
        prediction_id: int,
        actual_outcome: float,
        ticker_outcomes: Optional[Mapping[str, Optional[float]]] = None,
        validated_at: Optional[datetime] = None,
    ) -> Prediction:
        """
        Validate a pending prediction against the realized outcome.

        Raises:
            RecordNotFoundError: unknown prediction
            PredictionStateError: prediction is not pending
            ConcurrentUpdateError: the pattern row changed under us (retryable)
        """
        prediction = self.predictions.get_for_update(prediction_id)
        self._require_pending(prediction, "validate")

        correct = direction_sign(prediction.predicted_direction) == _sign(actual_outcome)
        prediction.actual_outcome = actual_outcome
        prediction.direction_correct = correct
        prediction.ticker_accuracy = ticker_accuracy(prediction.per_ticker_forecasts or [], ticker_outcomes or {})
        prediction.status = VALIDATED
        prediction.validated_at = validated_at or utc_now()

        if prediction.pattern_id is not None:
            self.catalog.record_outcome(prediction.pattern_id, correct)

        self.db.flush()
        logger.info(
            f"Validated prediction {prediction_id}: {prediction.predicted_direction} vs "
            f"{actual_outcome:+.2f}% -> correct={correct}, ticker_accuracy={prediction.ticker_accuracy}"
        )
        return prediction

    def expire(self, prediction_id: int, expired_at: Optional[datetime] = None) -> Prediction:
        """Move a pending prediction to `expired`. The catalog is not touched."""
        prediction = self.predictions.get_for_update(prediction_id)
        self._require_pending(prediction, "expire")

        prediction.status = EXPIRED
        prediction.validated_at = expired_at or utc_now()
        self.db.flush()
        logger.info(f"Expired prediction {prediction_id} (session {prediction.target_session_date} never resolved)")
        return prediction

    @staticmethod
    def _require_pending(prediction: Prediction, action: str) -> None:
        if prediction.status != PENDING:
            raise PredictionStateError(
                f"Cannot {action} prediction {prediction.id} in status '{prediction.status}'",
                prediction_id=prediction.id,
                status=prediction.status,
            )


# ============================================================================
# Batch entry points
# ============================================================================

@retry(
    retry=retry_if_exception_type(ConcurrentUpdateError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)
def _validate_from_store(
    session_factory: Optional[Callable[[], Session]],
    prediction_id: int,
    calendar: SessionCalendar,
    as_of: datetime,
) -> bool:
    """Validate one prediction from stored target prices; False while data is missing."""
    with transaction_scope(session_factory) as db:
        prediction = PredictionRepository(db).get_by_id(prediction_id)
        if prediction is None or prediction.target_session_date is None:
            return False

        session = calendar.session_for(prediction.target_session_date)
        if as_of < session.close_at:
            return False

        prices = PriceRepository(db)
        target = prices.get_target_price(prediction.target_symbol, prediction.target_session_date)
        actual = target.gap_pct if target is not None else None
        if actual is None:
            return False

        ticker_outcomes = {}
        for forecast in prediction.per_ticker_forecasts or []:
            row = prices.get_target_price(forecast["ticker"], prediction.target_session_date)
            ticker_outcomes[forecast["ticker"]] = row.gap_pct if row is not None else None

        ValidationEngine(db).validate(prediction_id, actual, ticker_outcomes, validated_at=as_of)
        return True


def validate_ready(
    as_of: Optional[datetime] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    calendar: Optional[SessionCalendar] = None,
) -> Dict[str, int]:
    """
    Validate every pending prediction whose session has closed and has target data.

    Each prediction is validated in its own transaction; a failure on one
    is logged and the batch continues.

    Returns:
        Counts of validated, waiting (no data yet) and failed predictions
    """
    as_of = to_naive_utc(as_of or utc_now())
    calendar = calendar or SessionCalendar()

    with transaction_scope(session_factory) as db:
        pending_ids = [p.id for p in PredictionRepository(db).list_pending()]

    counts = {"validated": 0, "waiting": 0, "failed": 0}
    for prediction_id in pending_ids:
        try:
            if _validate_from_store(session_factory, prediction_id, calendar, as_of):
                counts["validated"] += 1
            else:
                counts["waiting"] += 1
        except PredictionStateError as e:
            logger.error(f"Prediction state violation during validation: {e.message} {e.details}")
            counts["failed"] += 1
        except CalendarError as e:
            logger.error(f"Prediction {prediction_id} targets a non-session day: {e.message}")
            counts["failed"] += 1
        except ConcurrentUpdateError as e:
            logger.warning(f"Prediction {prediction_id} left pending after repeated pattern conflicts: {e.message}")
            counts["failed"] += 1

    logger.info(
        f"Validation sweep: {counts['validated']} validated, {counts['waiting']} waiting for data, "
        f"{counts['failed']} failed"
    )
    return counts


def expire_stale(
    as_of: Optional[datetime] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    expiry_days: Optional[int] = None,
) -> int:
    """
    Expire pending predictions older than the horizon whose target session has no data.

    Returns:
        Number of predictions expired
    """
    as_of = to_naive_utc(as_of or utc_now())
    days = settings.prediction_expiry_days if expiry_days is None else expiry_days
    cutoff = as_of - timedelta(days=days)

    expired = 0
    with transaction_scope(session_factory) as db:
        prices = PriceRepository(db)
        engine = ValidationEngine(db)
        for prediction in PredictionRepository(db).list_pending(created_before=cutoff):
            if prediction.target_session_date is not None:
                target = prices.get_target_price(prediction.target_symbol, prediction.target_session_date)
                if target is not None and target.gap_pct is not None:
                    # Data arrived; the validation sweep will pick it up
                    continue
            engine.expire(prediction.id, expired_at=as_of)
            expired += 1

    if expired:
        logger.info(f"Expired {expired} stale predictions (older than {days} days)")
    return expired
