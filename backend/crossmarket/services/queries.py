"""
Read-only query surface for outer layers (HTTP, CLI, dashboards).

Reads return the last committed state and never wait on batch jobs. Errors
are logged and an empty result is returned instead of propagating.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import desc, func
from sqlalchemy.orm import Session
from loguru import logger

from crossmarket.config import settings
from crossmarket.db.models import JobRun, Prediction
from crossmarket.db.repositories import AlertRepository, PredictionRepository
from crossmarket.db.session import transaction_scope
from crossmarket.domain.predictions import PENDING, VALIDATED, PatternView, PredictionView
from crossmarket.domain.signals import CombinedAlertView
from crossmarket.services.pattern_catalog import PatternCatalog
from crossmarket.services.pipeline import DetectionPipeline
from crossmarket.services.session_calendar import SessionCalendar
from crossmarket.utils.datetime import to_naive_utc, utc_now
from crossmarket.utils.errors import CrossMarketError


def _summarize(predictions: List[Prediction]) -> Dict[str, Any]:
    total = len(predictions)
    correct = sum(1 for p in predictions if p.direction_correct)
    ticker_scores = [p.ticker_accuracy for p in predictions if p.ticker_accuracy is not None]
    return {
        "total_validated": total,
        "correct": correct,
        "accuracy_pct": round(correct / total * 100.0, 2) if total else None,
        "avg_ticker_accuracy": round(sum(ticker_scores) / len(ticker_scores), 2) if ticker_scores else None,
    }


class QueryService:
    """Pure reads over persisted state, plus the detection-run trigger."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        calendar: Optional[SessionCalendar] = None,
    ):
        self.session_factory = session_factory
        self.calendar = calendar or SessionCalendar()

    def list_active_patterns(self, min_accuracy: Optional[float] = None) -> List[PatternView]:
        try:
            with transaction_scope(self.session_factory) as db:
                return PatternCatalog(db).snapshot(min_accuracy)
        except CrossMarketError as e:
            logger.error(f"list_active_patterns failed: {e.message}")
            return []

    def list_pending_predictions(self) -> List[PredictionView]:
        """Pending predictions of the current generation."""
        try:
            with transaction_scope(self.session_factory) as db:
                rows = PredictionRepository(db).list_current(status=PENDING)
                return [PredictionView.model_validate(p) for p in rows]
        except CrossMarketError as e:
            logger.error(f"list_pending_predictions failed: {e.message}")
            return []

    def validated_history(self, limit: int = 50) -> Dict[str, Any]:
        """Most recent validated predictions plus aggregate accuracy over all of them."""
        try:
            with transaction_scope(self.session_factory) as db:
                repo = PredictionRepository(db)
                items = [PredictionView.model_validate(p) for p in repo.list_by_status(VALIDATED, limit=limit)]
                summary = _summarize(repo.list_by_status(VALIDATED))
                return {"items": items, "summary": summary}
        except CrossMarketError as e:
            logger.error(f"validated_history failed: {e.message}")
            return {"items": [], "summary": _summarize([])}

    def dashboard_summary(self, as_of: Optional[datetime] = None, top_n: int = 5) -> Dict[str, Any]:
        """Market phase, top patterns, pending count, 30-day rolling performance, latest alerts and job runs."""
        as_of = to_naive_utc(as_of or utc_now())
        phase = self.calendar.market_phase(as_of)
        empty = {
            "market_phase": phase,
            "top_patterns": [],
            "pending_count": 0,
            "rolling_30d": _summarize([]),
            "latest_alerts": [],
            "recent_jobs": [],
            "generated_at": as_of,
        }
        try:
            with transaction_scope(self.session_factory) as db:
                repo = PredictionRepository(db)
                generation_id = repo.current_generation_id()
                pending_count = 0
                if generation_id is not None:
                    pending_count = (
                        db.query(func.count(Prediction.id))
                        .filter(Prediction.generation_id == generation_id, Prediction.status == PENDING)
                        .scalar()
                    )
                recent = repo.list_by_status(VALIDATED, since=as_of - timedelta(days=30))
                jobs = db.query(JobRun).order_by(desc(JobRun.started_at), desc(JobRun.id)).limit(5).all()
                return {
                    "market_phase": phase,
                    "top_patterns": PatternCatalog(db).snapshot(settings.prediction_min_accuracy)[:top_n],
                    "pending_count": pending_count or 0,
                    "rolling_30d": _summarize(recent),
                    "latest_alerts": [
                        CombinedAlertView.model_validate(a) for a in AlertRepository(db).list_recent(5)
                    ],
                    "recent_jobs": [
                        {"job_name": j.job_name, "status": j.status, "started_at": j.started_at,
                         "finished_at": j.finished_at, "error": j.error}
                        for j in jobs
                    ],
                    "generated_at": as_of,
                }
        except CrossMarketError as e:
            logger.error(f"dashboard_summary failed: {e.message}")
            return empty

    def trigger_detection_run(self, as_of: Optional[datetime] = None, **pipeline_kwargs) -> Dict[str, Any]:
        """Run the full pipeline. Unlike the reads, failures propagate to the caller."""
        pipeline = DetectionPipeline(session_factory=self.session_factory, **pipeline_kwargs)
        return pipeline.run(as_of)
