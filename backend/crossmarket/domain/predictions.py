"""
Domain models for patterns and predictions.

`PatternView` and `PredictionView` are detached, immutable snapshots of the
ORM rows. They are what read paths return and what the generator consumes,
so nothing downstream can observe a half-written row.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# Prediction directions, ordered from most bearish to most bullish
STRONG_DOWN = "strong_down"
MODERATE_DOWN = "moderate_down"
NEUTRAL = "neutral"
MODERATE_UP = "moderate_up"
STRONG_UP = "strong_up"

DIRECTIONS = (STRONG_DOWN, MODERATE_DOWN, NEUTRAL, MODERATE_UP, STRONG_UP)

# Prediction lifecycle
PENDING = "pending"
VALIDATED = "validated"
EXPIRED = "expired"

TERMINAL_STATUSES = (VALIDATED, EXPIRED)

# Pattern status
ADMITTED = "admitted"
REJECTED = "rejected"


class TickerForecast(BaseModel):
    """Per-ticker forecast attached to a prediction."""

    ticker: str
    predicted_change_pct: float
    correlation_score: float = Field(..., ge=-1.0, le=1.0)
    historical_accuracy: Optional[float] = None
    recommendation: str
    pattern_id: Optional[int] = None


class PatternView(BaseModel):
    """Read-only snapshot of a catalog pattern."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    driver_symbol: str
    target_symbol: str
    coefficient: float
    sample_size: int
    accuracy_rate: float
    avg_driver_move: Optional[float] = None
    avg_target_move: Optional[float] = None
    pair_count: Optional[int] = None
    directional_accuracy: Optional[float] = None
    status: str
    is_active: bool
    oracle_verdict: Optional[bool] = None
    description: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @property
    def correlation_score(self) -> float:
        return self.coefficient


class PredictionView(BaseModel):
    """Read-only snapshot of a prediction."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    pattern_id: Optional[int] = None
    generation_id: Optional[int] = None
    driver_symbol: str
    target_symbol: str
    target_session_date: Optional[date] = None
    driver_move_pct: float
    predicted_direction: str
    confidence: float
    per_ticker_forecasts: List[TickerForecast] = []
    status: str
    actual_outcome: Optional[float] = None
    direction_correct: Optional[bool] = None
    ticker_accuracy: Optional[float] = None
    created_at: datetime
    validated_at: Optional[datetime] = None
