"""
Prediction Generator - turns a fresh driver move into a pending directional prediction.

Bucketing (boundaries belong to the larger-magnitude bucket):
    move < -5          strong_down    0.85
    -5 <= move < -2    moderate_down  0.70
    -2 <= move <= 2    neutral        0.50
    2 < move <= 5      moderate_up    0.70
    move > 5           strong_up      0.85

Per-ticker forecasts are `move * coefficient` for every active pattern whose
driver matches, sorted by correlation descending. The generator reads the
catalog snapshot it is handed and never writes to the catalog.
"""

from datetime import date, datetime
from typing import Any, List, Optional, Sequence

from sqlalchemy.orm import Session
from loguru import logger

from crossmarket.config import settings
from crossmarket.db.models import Prediction
from crossmarket.db.repositories import PredictionRepository
from crossmarket.domain.predictions import (
    MODERATE_DOWN,
    MODERATE_UP,
    NEUTRAL,
    PENDING,
    STRONG_DOWN,
    STRONG_UP,
    TickerForecast,
)
from crossmarket.services.session_calendar import SessionCalendar
from crossmarket.utils.datetime import utc_now

BASE_CONFIDENCE = {
    STRONG_DOWN: 0.85,
    MODERATE_DOWN: 0.70,
    NEUTRAL: 0.50,
    MODERATE_UP: 0.70,
    STRONG_UP: 0.85,
}

DIRECTION_SIGN = {
    STRONG_DOWN: -1,
    MODERATE_DOWN: -1,
    NEUTRAL: 0,
    MODERATE_UP: 1,
    STRONG_UP: 1,
}


def bucket_direction(driver_move_pct: float) -> str:
    """Map a driver move (percent) to a direction bucket."""
    if driver_move_pct < -5:
        return STRONG_DOWN
    if driver_move_pct < -2:
        return MODERATE_DOWN
    if driver_move_pct <= 2:
        return NEUTRAL
    if driver_move_pct <= 5:
        return MODERATE_UP
    return STRONG_UP


def base_confidence(direction: str) -> float:
    return BASE_CONFIDENCE[direction]


def direction_sign(direction: str) -> int:
    return DIRECTION_SIGN[direction]


def recommendation_for(predicted_change: float, correlation_score: float) -> str:
    """Display label for a per-ticker forecast. Not a trading instruction."""
    if abs(predicted_change) < 1:
        return "WATCH"
    if predicted_change < -3 and correlation_score > 0.7:
        return "SHORT"
    if predicted_change > 3 and correlation_score > 0.7:
        return "BUY"
    if predicted_change < -2:
        return "AVOID"
    if predicted_change > 2:
        return "CONSIDER"
    return "NEUTRAL"


class PredictionGenerator:
    """Builds pending predictions from a catalog snapshot."""

    def __init__(
        self,
        calendar: Optional[SessionCalendar] = None,
        benchmark_symbol: Optional[str] = None,
    ):
        self.calendar = calendar
        self.benchmark_symbol = (benchmark_symbol or settings.benchmark_symbol).upper()

    def build_forecasts(
        self,
        driver_symbol: str,
        driver_move_pct: float,
        active_patterns: Sequence[Any],
    ) -> List[TickerForecast]:
        """Per-ticker forecasts for patterns of this driver, correlation descending."""
        driver = driver_symbol.upper()
        forecasts = []
        for pattern in active_patterns:
            if pattern.driver_symbol.upper() != driver:
                continue
            change = driver_move_pct * pattern.coefficient
            forecasts.append(TickerForecast(
                ticker=pattern.target_symbol,
                predicted_change_pct=change,
                correlation_score=pattern.coefficient,
                historical_accuracy=pattern.accuracy_rate,
                recommendation=recommendation_for(change, pattern.coefficient),
                pattern_id=pattern.id,
            ))
        forecasts.sort(key=lambda f: f.correlation_score, reverse=True)
        return forecasts

    def generate(
        self,
        driver_symbol: str,
        driver_move_pct: float,
        active_patterns: Sequence[Any],
        target_session_date: Optional[date] = None,
        as_of: Optional[datetime] = None,
    ) -> Prediction:
        """
        Build an unsaved pending prediction.

        Args:
            driver_symbol: Driver asset whose move is being projected
            driver_move_pct: Off-session driver move in percent
            active_patterns: Catalog snapshot in `get_active` order
            target_session_date: Session being predicted (calendar lookup when omitted)
            as_of: Creation time (defaults to now)

        Returns:
            Prediction ORM instance in `pending` state, not added to any session
        """
        created_at = as_of or utc_now()
        direction = bucket_direction(driver_move_pct)
        forecasts = self.build_forecasts(driver_symbol, driver_move_pct, active_patterns)

        lead = next(
            (p for p in active_patterns if p.driver_symbol.upper() == driver_symbol.upper()),
            None,
        )
        if target_session_date is None and self.calendar is not None:
            target_session_date = self.calendar.next_session_after(created_at).session_date

        prediction = Prediction(
            pattern_id=lead.id if lead else None,
            driver_symbol=driver_symbol.upper(),
            target_symbol=lead.target_symbol if lead else self.benchmark_symbol,
            target_session_date=target_session_date,
            driver_move_pct=driver_move_pct,
            predicted_direction=direction,
            confidence=base_confidence(direction),
            per_ticker_forecasts=[f.model_dump() for f in forecasts],
            status=PENDING,
            created_at=created_at,
        )

        logger.info(
            f"Prediction {driver_symbol.upper()} {driver_move_pct:+.2f}% -> {direction} "
            f"(confidence={prediction.confidence:.2f}, tickers={len(forecasts)}, "
            f"session={target_session_date})"
        )
        return prediction

    def generate_and_persist(
        self,
        db: Session,
        driver_symbol: str,
        driver_move_pct: float,
        active_patterns: Sequence[Any],
        target_session_date: Optional[date] = None,
        as_of: Optional[datetime] = None,
    ) -> Prediction:
        """Generate and insert a single pending prediction in the caller's transaction."""
        prediction = self.generate(driver_symbol, driver_move_pct, active_patterns, target_session_date, as_of)
        return PredictionRepository(db).add(prediction)
