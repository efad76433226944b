"""
Result of evaluating a driver -> target relationship.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CorrelationResult(BaseModel):
    """Statistics and admission decision for one (driver, target) pair set."""

    model_config = ConfigDict(frozen=True)

    driver_symbol: str = ""
    target_symbol: str = ""
    coefficient: float = Field(..., ge=-1.0, le=1.0)
    directional_accuracy: float = Field(..., ge=0.0, le=100.0)
    avg_driver_move: float
    avg_target_move: float
    sample_size: int = Field(..., ge=0)

    # Threshold decision alone, and the final decision after the oracle
    statistically_admissible: bool
    admissible: bool
    oracle_verdict: Optional[bool] = None
