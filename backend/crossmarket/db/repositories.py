"""
Repository pattern for data access.

Provides clean interfaces for database operations, abstracting SQLAlchemy details.
Each repository handles a single aggregate (prices, predictions, alerts).
Repositories flush but never commit; the caller owns the transaction.
"""

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, desc
from sqlalchemy.orm import Session
from loguru import logger

from crossmarket.db.models import (
    CombinedAlert,
    DriverPrice,
    GenerationPointer,
    Prediction,
    PredictionGeneration,
    TargetPrice,
)
from crossmarket.domain.market import PricePoint, TargetSessionPrice
from crossmarket.domain.predictions import EXPIRED, PENDING, TERMINAL_STATUSES
from crossmarket.domain.signals import CombinedAlertDraft
from crossmarket.utils.datetime import utc_now
from crossmarket.utils.errors import RecordNotFoundError

PREDICTIONS_POINTER = "predictions"


class PriceRepository:
    """Repository for driver and target price observations."""

    def __init__(self, db: Session):
        self.db = db

    def add_driver_prices(self, points: Iterable[PricePoint], source: Optional[str] = None) -> int:
        """Append driver observations, skipping (symbol, timestamp) keys already stored."""
        inserted = 0
        for point in points:
            exists = self.db.query(DriverPrice.id).filter(
                and_(DriverPrice.symbol == point.symbol, DriverPrice.timestamp == point.timestamp)
            ).first()
            if exists:
                continue
            self.db.add(DriverPrice(
                symbol=point.symbol,
                timestamp=point.timestamp,
                price=point.price,
                is_session_open=point.is_session_open,
                is_session_close=point.is_session_close,
                source=source,
            ))
            inserted += 1
        self.db.flush()
        return inserted

    def upsert_target_prices(self, rows: Iterable[TargetSessionPrice], source: Optional[str] = None) -> int:
        """Insert target session bars, filling close/prior_close on existing rows."""
        written = 0
        for row in rows:
            existing = self.get_target_price(row.symbol, row.session_date)
            if existing is None:
                self.db.add(TargetPrice(
                    symbol=row.symbol,
                    session_date=row.session_date,
                    open=row.open,
                    close=row.close,
                    prior_close=row.prior_close,
                    source=source,
                ))
                written += 1
                continue
            changed = False
            if row.close is not None and existing.close != row.close:
                existing.close = row.close
                changed = True
            if row.prior_close is not None and existing.prior_close is None:
                existing.prior_close = row.prior_close
                changed = True
            written += int(changed)
        self.db.flush()
        return written

    def get_driver_series(
        self,
        symbol: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[PricePoint]:
        """Driver observations for a symbol in ascending timestamp order."""
        query = self.db.query(DriverPrice).filter(DriverPrice.symbol == symbol.upper())
        if start:
            query = query.filter(DriverPrice.timestamp >= start)
        if end:
            query = query.filter(DriverPrice.timestamp <= end)

        return [
            PricePoint(
                symbol=row.symbol,
                timestamp=row.timestamp,
                price=row.price,
                is_session_open=row.is_session_open,
                is_session_close=row.is_session_close,
            )
            for row in query.order_by(DriverPrice.timestamp.asc()).all()
        ]

    def get_target_price(self, symbol: str, session_date: date) -> Optional[TargetPrice]:
        """Target bar for one session, if stored."""
        return self.db.query(TargetPrice).filter(
            and_(TargetPrice.symbol == symbol.upper(), TargetPrice.session_date == session_date)
        ).first()

    def get_target_prices(
        self,
        symbol: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Dict[date, TargetPrice]:
        """Target bars keyed by session date."""
        query = self.db.query(TargetPrice).filter(TargetPrice.symbol == symbol.upper())
        if start:
            query = query.filter(TargetPrice.session_date >= start)
        if end:
            query = query.filter(TargetPrice.session_date <= end)
        return {row.session_date: row for row in query.all()}


class PredictionRepository:
    """Repository for predictions and their generation-tagged active sets."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, prediction: Prediction) -> Prediction:
        """Persist a single pending prediction outside of any generation swap."""
        self._archive_replaced([prediction])
        self.db.add(prediction)
        self.db.flush()
        return prediction

    def get_by_id(self, prediction_id: int) -> Optional[Prediction]:
        return self.db.query(Prediction).filter(Prediction.id == prediction_id).first()

    def get_for_update(self, prediction_id: int) -> Prediction:
        """Load and lock a prediction row; raises RecordNotFoundError when missing."""
        prediction = (
            self.db.query(Prediction)
            .filter(Prediction.id == prediction_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if prediction is None:
            raise RecordNotFoundError(f"Prediction {prediction_id} not found")
        return prediction

    def list_pending(self, created_before: Optional[datetime] = None) -> List[Prediction]:
        """All pending predictions, oldest first."""
        query = self.db.query(Prediction).filter(Prediction.status == PENDING)
        if created_before is not None:
            query = query.filter(Prediction.created_at < created_before)
        return query.order_by(Prediction.created_at.asc(), Prediction.id.asc()).all()

    def list_by_status(self, status: str, since: Optional[datetime] = None, limit: Optional[int] = None) -> List[Prediction]:
        query = self.db.query(Prediction).filter(Prediction.status == status)
        if since is not None:
            query = query.filter(Prediction.created_at >= since)
        query = query.order_by(desc(Prediction.created_at), desc(Prediction.id))
        if limit:
            query = query.limit(limit)
        return query.all()

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------

    def current_generation_id(self) -> Optional[int]:
        pointer = self.db.get(GenerationPointer, PREDICTIONS_POINTER)
        return pointer.generation_id if pointer else None

    def list_current(self, status: Optional[str] = None) -> List[Prediction]:
        """Predictions of the current generation (empty before the first swap)."""
        generation_id = self.current_generation_id()
        if generation_id is None:
            return []
        query = self.db.query(Prediction).filter(Prediction.generation_id == generation_id)
        if status:
            query = query.filter(Prediction.status == status)
        return query.order_by(desc(Prediction.confidence), Prediction.id.asc()).all()

    def replace_active_set(
        self,
        predictions: Sequence[Prediction],
        alerts: Sequence[CombinedAlertDraft] = (),
        job_run_id: Optional[int] = None,
    ) -> PredictionGeneration:
        """
        Write a new generation and make it current.

        Must run inside the caller's transaction: the generation row, its
        predictions, its combined alerts and the pointer flip commit together,
        so readers see either the old set or the new one, never a mix.

        Older pending predictions for the same driver and target session are
        archived as expired in the same transaction, so a session is only
        ever validated (and fed back into its pattern) once.
        """
        archived = self._archive_replaced(predictions)

        generation = PredictionGeneration(job_run_id=job_run_id, prediction_count=len(predictions))
        self.db.add(generation)
        self.db.flush()

        for prediction in predictions:
            prediction.generation_id = generation.id
            self.db.add(prediction)

        alert_repo = AlertRepository(self.db)
        for draft in alerts:
            alert_repo.add(draft, generation_id=generation.id)

        pointer = self.db.get(GenerationPointer, PREDICTIONS_POINTER, with_for_update=True)
        if pointer is None:
            pointer = GenerationPointer(name=PREDICTIONS_POINTER)
            self.db.add(pointer)
        previous = pointer.generation_id
        pointer.generation_id = generation.id
        self.db.flush()

        logger.info(
            f"Prediction generation {generation.id} is current "
            f"(predictions={len(predictions)}, alerts={len(alerts)}, archived={archived}, previous={previous})"
        )
        return generation

    def _archive_replaced(self, predictions: Sequence[Prediction]) -> int:
        keys = {(p.driver_symbol, p.target_session_date) for p in predictions}
        incoming = {id(p) for p in predictions}
        archived = 0
        now = utc_now()
        for driver_symbol, session_date in keys:
            stale = (
                self.db.query(Prediction)
                .filter(
                    and_(
                        Prediction.status == PENDING,
                        Prediction.driver_symbol == driver_symbol,
                        Prediction.target_session_date == session_date,
                    )
                )
                .with_for_update()
                .all()
            )
            for prediction in stale:
                if id(prediction) in incoming:
                    continue
                prediction.status = EXPIRED
                prediction.validated_at = now
                archived += 1
        self.db.flush()
        return archived

    def collect_garbage(self, retain: int) -> int:
        """
        Drop superseded generations beyond the newest `retain` ones.

        A generation is only dropped once all of its predictions are terminal;
        the predictions stay as history with their generation tag cleared.
        Returns the number of generations removed.
        """
        current_id = self.current_generation_id()
        generations = (
            self.db.query(PredictionGeneration)
            .order_by(desc(PredictionGeneration.id))
            .all()
        )
        superseded = [g for g in generations if g.id != current_id][max(retain, 0):]

        removed = 0
        for generation in superseded:
            members = self.db.query(Prediction).filter(Prediction.generation_id == generation.id).all()
            if any(p.status not in TERMINAL_STATUSES for p in members):
                continue
            for prediction in members:
                prediction.generation_id = None
            self.db.query(CombinedAlert).filter(
                CombinedAlert.generation_id == generation.id
            ).update({CombinedAlert.generation_id: None}, synchronize_session=False)
            self.db.flush()
            self.db.delete(generation)
            removed += 1

        self.db.flush()
        if removed:
            logger.info(f"Collected {removed} superseded prediction generations")
        return removed


class AlertRepository:
    """Repository for combined alerts (insert and read only)."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, draft: CombinedAlertDraft, generation_id: Optional[int] = None) -> CombinedAlert:
        alert = CombinedAlert(
            generation_id=generation_id,
            component_ids=list(draft.component_signal_ids),
            direction=draft.direction,
            severity=draft.severity,
            confidence=draft.confidence,
            merged_forecasts=[t.model_dump() for t in draft.merged_ticker_forecasts],
            created_at=draft.created_at,
        )
        self.db.add(alert)
        self.db.flush()
        return alert

    def list_recent(self, limit: int = 10) -> List[CombinedAlert]:
        return (
            self.db.query(CombinedAlert)
            .order_by(desc(CombinedAlert.created_at), desc(CombinedAlert.id))
            .limit(limit)
            .all()
        )
