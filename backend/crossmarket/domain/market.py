"""
Domain models for market observations and session windows.

Pure data models with Pydantic validation; no database or network access.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crossmarket.utils.datetime import to_naive_utc


class PricePoint(BaseModel):
    """A single driver observation. Immutable once written."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    symbol: str = Field(..., min_length=1, max_length=20)
    timestamp: datetime
    price: float = Field(..., gt=0)
    is_session_open: bool = False
    is_session_close: bool = False

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.upper()

    @field_validator("timestamp")
    @classmethod
    def naive_utc(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class TargetSession(BaseModel):
    """A scheduled target-market session (naive UTC open/close)."""

    model_config = ConfigDict(frozen=True)

    session_date: date
    open_at: datetime
    close_at: datetime


class TargetSessionPrice(BaseModel):
    """Realized prices of one target session."""

    model_config = ConfigDict(str_strip_whitespace=True)

    symbol: str
    session_date: date
    open: float = Field(..., gt=0)
    close: Optional[float] = None
    prior_close: Optional[float] = None

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.upper()

    @property
    def gap_pct(self) -> Optional[float]:
        """Open versus prior close, in percent."""
        if not self.prior_close:
            return None
        return (self.open - self.prior_close) / self.prior_close * 100.0


class SessionWindow(BaseModel):
    """
    A driver off-session window matched to the target session it precedes.

    Derived by the aligner, never stored on its own.
    """

    model_config = ConfigDict(frozen=True)

    driver_symbol: str
    driver_window_start: datetime
    driver_window_end: datetime
    target_session_date: date
    start_price: float
    end_price: float

    @property
    def move_pct(self) -> float:
        return (self.end_price - self.start_price) / self.start_price * 100.0


class MovePair(BaseModel):
    """One aligned (driver move, target move) observation."""

    model_config = ConfigDict(frozen=True)

    session_date: date
    driver_move_pct: float
    target_move_pct: float
