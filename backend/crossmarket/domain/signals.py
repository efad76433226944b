"""
Common signal shape emitted by every detector.

The aggregator only sees `Signal`, so it does not care how many detectors
exist or how each one arrives at its view.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from crossmarket.utils.datetime import utc_now


DOWN = -1
FLAT = 0
UP = 1


class TickerImpact(BaseModel):
    """A ticker a signal expects to move."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    predicted_change: float
    correlation_strength: float = 0.0
    recommendation: Optional[str] = None


class Signal(BaseModel):
    """Directional view from one independent detector."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: str  # "crypto_correlation", "event_sentiment", ...
    direction: int = Field(..., ge=-1, le=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    severity: str = "medium"
    title: str = ""
    affected_tickers: List[TickerImpact] = []
    created_at: datetime = Field(default_factory=utc_now)


class CombinedAlertDraft(BaseModel):
    """A combined alert before it is persisted."""

    model_config = ConfigDict(frozen=True)

    component_signal_ids: List[str]
    direction: int
    severity: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    merged_ticker_forecasts: List[TickerImpact]
    created_at: datetime = Field(default_factory=utc_now)


class CombinedAlertView(BaseModel):
    """Read-only snapshot of a persisted combined alert."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    generation_id: Optional[int] = None
    component_ids: List[str]
    direction: int
    severity: str
    confidence: float
    merged_forecasts: List[TickerImpact]
    created_at: datetime
