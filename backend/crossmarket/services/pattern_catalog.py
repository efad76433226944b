"""
Pattern Catalog - durable registry of driver -> target correlation patterns.

Admission is guarded here as well as in the correlation engine: a pattern can
only reach `admitted` when it clears the sample-size and strength thresholds.
Accuracy feedback from validation is serialized per row with a row lock plus
the model's version column, so concurrent validations cannot lose updates.

Re-evaluations refresh the coefficient and the latest run's statistics
(`pair_count`, `directional_accuracy`) but never reset `accuracy_rate` or
`sample_size` on an existing row: those accumulate validated outcomes.
"""

from typing import List, Optional

from sqlalchemy import and_, desc
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from loguru import logger

from crossmarket.config import settings
from crossmarket.db.models import CorrelationPattern
from crossmarket.domain.correlation import CorrelationResult
from crossmarket.domain.predictions import ADMITTED, REJECTED, PatternView
from crossmarket.utils.datetime import utc_now
from crossmarket.utils.errors import (
    ConcurrentUpdateError,
    PatternAdmissionError,
    RecordNotFoundError,
)


class PatternCatalog:
    """Catalog operations over `correlation_patterns`. Flushes, never commits."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Writes from detection runs
    # ------------------------------------------------------------------

    def register(self, result: CorrelationResult) -> CorrelationPattern:
        """Store an evaluation: admissible results are admitted, others rejected."""
        if result.admissible:
            return self.admit(result)

        pattern = self._get_pair(result.driver_symbol, result.target_symbol, lock=True)
        if pattern is None:
            pattern = CorrelationPattern(
                driver_symbol=result.driver_symbol.upper(),
                target_symbol=result.target_symbol.upper(),
                created_at=utc_now(),
            )
            self.db.add(pattern)
        elif pattern.status == ADMITTED:
            logger.info(f"Pattern {pattern.driver_symbol}->{pattern.target_symbol} no longer qualifies; rejecting")

        self._apply_result(pattern, result)
        pattern.status = REJECTED
        pattern.is_active = False
        self.db.flush()
        return pattern

    def admit(self, result: CorrelationResult) -> CorrelationPattern:
        """
        Admit (or refresh) a pattern from an admissible evaluation.

        Raises:
            PatternAdmissionError: the result is not admissible or fails the thresholds
        """
        if not result.admissible or not _meets_thresholds(result):
            raise PatternAdmissionError(
                f"Pattern {result.driver_symbol}->{result.target_symbol} does not meet admission thresholds",
                details={
                    "sample_size": result.sample_size,
                    "coefficient": result.coefficient,
                    "directional_accuracy": result.directional_accuracy,
                    "admissible": result.admissible,
                },
            )

        pattern = self._get_pair(result.driver_symbol, result.target_symbol, lock=True)
        if pattern is None:
            pattern = CorrelationPattern(
                driver_symbol=result.driver_symbol.upper(),
                target_symbol=result.target_symbol.upper(),
                created_at=utc_now(),
                is_active=True,
            )
            self.db.add(pattern)
            logger.info(
                f"Admitted new pattern {pattern.driver_symbol}->{pattern.target_symbol} "
                f"(r={result.coefficient:.3f}, acc={result.directional_accuracy:.1f}%, n={result.sample_size})"
            )
        elif pattern.status != ADMITTED:
            # Previously rejected rows come back active; operator deactivations are kept
            pattern.is_active = True

        self._apply_result(pattern, result)
        pattern.status = ADMITTED
        self.db.flush()
        return pattern

    def _apply_result(self, pattern: CorrelationPattern, result: CorrelationResult) -> None:
        # Rolling accuracy is seeded once; afterwards only record_outcome moves it
        if pattern.id is None:
            pattern.sample_size = result.sample_size
            pattern.accuracy_rate = result.directional_accuracy
        pattern.coefficient = result.coefficient
        pattern.pair_count = result.sample_size
        pattern.directional_accuracy = result.directional_accuracy
        pattern.avg_driver_move = result.avg_driver_move
        pattern.avg_target_move = result.avg_target_move
        pattern.oracle_verdict = result.oracle_verdict
        pattern.description = (
            f"{pattern.driver_symbol} off-session moves vs {pattern.target_symbol} opening gap: "
            f"r={result.coefficient:.2f}, same direction {result.directional_accuracy:.0f}% "
            f"of {result.sample_size} sessions"
        )
        pattern.last_updated = utc_now()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, pattern_id: int) -> Optional[CorrelationPattern]:
        return self.db.get(CorrelationPattern, pattern_id)

    def get_active(
        self,
        min_accuracy: Optional[float] = None,
        driver_symbol: Optional[str] = None,
    ) -> List[CorrelationPattern]:
        """
        Admitted, active patterns with accuracy_rate >= min_accuracy.

        Ordered by accuracy_rate desc, then sample_size desc.
        """
        if min_accuracy is None:
            min_accuracy = settings.prediction_min_accuracy

        query = self.db.query(CorrelationPattern).filter(
            and_(
                CorrelationPattern.status == ADMITTED,
                CorrelationPattern.is_active.is_(True),
                CorrelationPattern.accuracy_rate >= min_accuracy,
            )
        )
        if driver_symbol:
            query = query.filter(CorrelationPattern.driver_symbol == driver_symbol.upper())

        return query.order_by(
            desc(CorrelationPattern.accuracy_rate),
            desc(CorrelationPattern.sample_size),
            CorrelationPattern.id.asc(),
        ).all()

    def snapshot(
        self,
        min_accuracy: Optional[float] = None,
        driver_symbol: Optional[str] = None,
    ) -> List[PatternView]:
        """Detached, immutable copy of `get_active` read in one query."""
        return [PatternView.model_validate(p) for p in self.get_active(min_accuracy, driver_symbol)]

    # ------------------------------------------------------------------
    # Feedback and operator switches
    # ------------------------------------------------------------------

    def record_outcome(self, pattern_id: int, was_correct: bool) -> CorrelationPattern:
        """
        Fold one validated outcome into the rolling accuracy.

        new_rate = (old_rate * n + (100 if correct else 0)) / (n + 1); n += 1

        Raises:
            RecordNotFoundError: unknown pattern
            ConcurrentUpdateError: another writer changed the row first
        """
        pattern = (
            self.db.query(CorrelationPattern)
            .filter(CorrelationPattern.id == pattern_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if pattern is None:
            raise RecordNotFoundError(f"Pattern {pattern_id} not found")

        n = pattern.sample_size or 0
        old_rate = pattern.accuracy_rate or 0.0
        pattern.accuracy_rate = (old_rate * n + (100.0 if was_correct else 0.0)) / (n + 1)
        pattern.sample_size = n + 1
        pattern.last_updated = utc_now()

        try:
            self.db.flush()
        except StaleDataError as e:
            raise ConcurrentUpdateError(
                f"Pattern {pattern_id} was modified concurrently",
                details={"pattern_id": pattern_id},
            ) from e

        logger.debug(
            f"Pattern {pattern_id} outcome recorded (correct={was_correct}): "
            f"accuracy {old_rate:.2f}% -> {pattern.accuracy_rate:.2f}%, n={pattern.sample_size}"
        )
        return pattern

    def deactivate(self, pattern_id: int) -> CorrelationPattern:
        """Exclude a pattern from predictions without touching its statistics."""
        pattern = self.get(pattern_id)
        if pattern is None:
            raise RecordNotFoundError(f"Pattern {pattern_id} not found")
        pattern.is_active = False
        self.db.flush()
        logger.info(f"Pattern {pattern_id} deactivated")
        return pattern

    def _get_pair(self, driver_symbol: str, target_symbol: str, lock: bool = False) -> Optional[CorrelationPattern]:
        query = self.db.query(CorrelationPattern).filter(
            and_(
                CorrelationPattern.driver_symbol == driver_symbol.upper(),
                CorrelationPattern.target_symbol == target_symbol.upper(),
            )
        )
        if lock:
            query = query.with_for_update()
        return query.first()


def _meets_thresholds(result: CorrelationResult) -> bool:
    return result.sample_size >= settings.min_sample_size and (
        abs(result.coefficient) > settings.min_abs_coefficient
        or result.directional_accuracy > settings.min_directional_accuracy
    )
