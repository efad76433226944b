"""
Batch task bodies shared by the CLI job scripts and the scheduler.

Each task records a job run, logs start/finish with elapsed time, and returns
a stats dict. Tasks never raise to the scheduler for data or source problems;
a lock held by another run is logged and reported as skipped.
"""

import time
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session
from loguru import logger

from crossmarket.config import settings
from crossmarket.db.repositories import PredictionRepository
from crossmarket.db.session import transaction_scope
from crossmarket.log_config import get_logger
from crossmarket.services.job_tracker import JobTracker, tracked_job
from crossmarket.services.pipeline import DetectionPipeline
from crossmarket.services.price_feeds import ingest_driver_prices, ingest_target_prices
from crossmarket.services.validation_engine import expire_stale, validate_ready
from crossmarket.utils.errors import JobAlreadyRunningError

SessionFactory = Optional[Callable[[], Session]]

events = get_logger(__name__)


def _timed(name: str, body: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    logger.info(f"Starting {name}...")
    start_time = time.time()
    try:
        stats = body()
    except JobAlreadyRunningError as e:
        logger.warning(f"Skipping {name}: {e.message}")
        events.info("task_skipped", task=name, reason=e.message)
        return {"skipped": True, "reason": e.message}
    elapsed = time.time() - start_time
    logger.info(f"{name} complete in {elapsed:.2f}s: {stats}")
    events.info("task_complete", task=name, elapsed_s=round(elapsed, 2))
    return stats


def run_driver_ingestion(
    symbols: Optional[List[str]] = None,
    history_days: Optional[int] = None,
    session_factory: SessionFactory = None,
) -> Dict[str, Any]:
    def body():
        with tracked_job("ingest_driver_prices", JobTracker(session_factory)) as job:
            stats = ingest_driver_prices(symbols, session_factory=session_factory, history_days=history_days)
            job.items_processed = stats["inserted"]
            return stats

    return _timed("driver price ingestion", body)


def run_target_ingestion(
    symbols: Optional[List[str]] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    session_factory: SessionFactory = None,
) -> Dict[str, Any]:
    def body():
        with tracked_job("ingest_target_prices", JobTracker(session_factory)) as job:
            stats = ingest_target_prices(symbols, start=start, end=end, session_factory=session_factory)
            job.items_processed = stats["written"]
            return stats

    return _timed("target price ingestion", body)


def run_detection(as_of: Optional[datetime] = None, session_factory: SessionFactory = None) -> Dict[str, Any]:
    return _timed("detection run", lambda: DetectionPipeline(session_factory=session_factory).run(as_of))


def run_validation(as_of: Optional[datetime] = None, session_factory: SessionFactory = None) -> Dict[str, Any]:
    """Validate ready predictions, then expire the ones that never resolved."""
    def body():
        with tracked_job("validate_predictions", JobTracker(session_factory)) as job:
            stats: Dict[str, Any] = dict(validate_ready(as_of, session_factory=session_factory))
            stats["expired"] = expire_stale(as_of, session_factory=session_factory)
            job.items_processed = stats["validated"] + stats["expired"]
            return stats

    return _timed("prediction validation", body)


def run_expiry_sweep(as_of: Optional[datetime] = None, session_factory: SessionFactory = None) -> Dict[str, Any]:
    def body():
        with tracked_job("expire_predictions", JobTracker(session_factory)) as job:
            job.items_processed = expire_stale(as_of, session_factory=session_factory)
            return {"expired": job.items_processed}

    return _timed("expiry sweep", body)


def run_watchdog(as_of: Optional[datetime] = None, session_factory: SessionFactory = None) -> Dict[str, Any]:
    return _timed("job watchdog", lambda: {"stale_failed": JobTracker(session_factory).sweep_stale(as_of)})


def run_generation_gc(retain: Optional[int] = None, session_factory: SessionFactory = None) -> Dict[str, Any]:
    keep = settings.generation_retention if retain is None else retain

    def body():
        with transaction_scope(session_factory) as db:
            return {"generations_removed": PredictionRepository(db).collect_garbage(keep)}

    return _timed("generation garbage collection", body)
