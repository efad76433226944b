"""
Correlation Engine - Pearson correlation and directional agreement over aligned moves.

Admission rule: at least `min_sample_size` pairs AND (|r| above
`min_abs_coefficient` OR directional accuracy above `min_directional_accuracy`).
An optional significance oracle may veto an admissible pattern; it is never
allowed to promote one that fails the thresholds.
"""

from typing import Optional, Sequence

import numpy as np
from loguru import logger

from crossmarket.config import settings
from crossmarket.domain.correlation import CorrelationResult
from crossmarket.domain.market import MovePair
from crossmarket.services.significance_oracle import SignificanceOracle


def pearson(driver_moves: np.ndarray, target_moves: np.ndarray) -> float:
    """Pearson coefficient, 0.0 when either side has zero variance."""
    if len(driver_moves) < 2:
        return 0.0
    d_std = driver_moves.std()
    t_std = target_moves.std()
    if d_std == 0 or t_std == 0:
        return 0.0
    cov = np.mean((driver_moves - driver_moves.mean()) * (target_moves - target_moves.mean()))
    r = float(cov / (d_std * t_std))
    if not np.isfinite(r):
        return 0.0
    return float(np.clip(r, -1.0, 1.0))


def directional_accuracy(driver_moves: np.ndarray, target_moves: np.ndarray) -> float:
    """Percentage (0-100) of pairs whose moves share a sign."""
    if len(driver_moves) == 0:
        return 0.0
    return float(np.mean(np.sign(driver_moves) == np.sign(target_moves)) * 100.0)


class CorrelationEngine:
    """Evaluates aligned move pairs and decides pattern admissibility."""

    def __init__(
        self,
        oracle: Optional[SignificanceOracle] = None,
        min_sample_size: Optional[int] = None,
        min_abs_coefficient: Optional[float] = None,
        min_directional_accuracy: Optional[float] = None,
        oracle_can_veto: Optional[bool] = None,
    ):
        self.oracle = oracle
        self.min_sample_size = settings.min_sample_size if min_sample_size is None else min_sample_size
        self.min_abs_coefficient = settings.min_abs_coefficient if min_abs_coefficient is None else min_abs_coefficient
        self.min_directional_accuracy = (
            settings.min_directional_accuracy if min_directional_accuracy is None else min_directional_accuracy
        )
        self.oracle_can_veto = settings.oracle_can_veto if oracle_can_veto is None else oracle_can_veto

    def is_admissible(self, sample_size: int, coefficient: float, accuracy: float) -> bool:
        """Threshold test shared with the catalog's admission guard."""
        return sample_size >= self.min_sample_size and (
            abs(coefficient) > self.min_abs_coefficient or accuracy > self.min_directional_accuracy
        )

    def evaluate(
        self,
        pairs: Sequence[MovePair],
        driver_symbol: str = "",
        target_symbol: str = "",
    ) -> CorrelationResult:
        """
        Compute statistics for one (driver, target) pair set.

        Args:
            pairs: Aligned move pairs
            driver_symbol: Driver asset symbol
            target_symbol: Target ticker

        Returns:
            CorrelationResult; non-admissible results are still returned
        """
        d = np.array([p.driver_move_pct for p in pairs], dtype=float)
        t = np.array([p.target_move_pct for p in pairs], dtype=float)
        n = len(pairs)

        coefficient = pearson(d, t)
        accuracy = directional_accuracy(d, t)
        avg_driver = float(d.mean()) if n else 0.0
        avg_target = float(t.mean()) if n else 0.0

        statistically_admissible = self.is_admissible(n, coefficient, accuracy)
        verdict = None
        admissible = statistically_admissible

        draft = CorrelationResult(
            driver_symbol=driver_symbol,
            target_symbol=target_symbol,
            coefficient=coefficient,
            directional_accuracy=accuracy,
            avg_driver_move=avg_driver,
            avg_target_move=avg_target,
            sample_size=n,
            statistically_admissible=statistically_admissible,
            admissible=admissible,
        )

        if statistically_admissible and self.oracle is not None:
            verdict = self._consult_oracle(draft)
            if verdict is False and self.oracle_can_veto:
                admissible = False
                logger.info(f"Oracle vetoed {driver_symbol}->{target_symbol} (r={coefficient:.3f}, n={n})")

        logger.debug(
            f"Evaluated {driver_symbol}->{target_symbol}: r={coefficient:.3f}, "
            f"acc={accuracy:.1f}%, n={n}, admissible={admissible}"
        )
        return draft.model_copy(update={"admissible": admissible, "oracle_verdict": verdict})

    def _consult_oracle(self, result: CorrelationResult) -> Optional[bool]:
        try:
            return self.oracle.judge(result)
        except Exception as e:
            logger.warning(
                f"Oracle {getattr(self.oracle, 'name', 'unknown')} failed for "
                f"{result.driver_symbol}->{result.target_symbol}, keeping statistical decision: {e}"
            )
            return None
