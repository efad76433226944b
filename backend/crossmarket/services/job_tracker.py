"""
Job tracking and the stuck-job watchdog.

Every batch job records a `job_runs` row. A fresh `running` row acts as the
job's lock; a running row whose last heartbeat is older than the stale
threshold is marked failed by the watchdog so the next scheduled run can
proceed from durable state. Partial writes are never rolled back or killed.
"""

from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Generator, List, Optional

from sqlalchemy import and_, desc
from sqlalchemy.orm import Session
from loguru import logger

from crossmarket.config import settings
from crossmarket.db.models import JobRun
from crossmarket.db.session import transaction_scope
from crossmarket.log_config import job_context
from crossmarket.utils.datetime import utc_now
from crossmarket.utils.errors import JobAlreadyRunningError, RecordNotFoundError

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


class JobTracker:
    """Start/heartbeat/finish bookkeeping for named batch jobs."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        stale_after_minutes: Optional[int] = None,
    ):
        self.session_factory = session_factory
        minutes = settings.job_stale_after_minutes if stale_after_minutes is None else stale_after_minutes
        self.stale_after = timedelta(minutes=minutes)

    def _last_seen(self, run: JobRun) -> datetime:
        return run.heartbeat_at or run.started_at

    def start(self, job_name: str, now: Optional[datetime] = None) -> int:
        """
        Record a new running job.

        Raises:
            JobAlreadyRunningError: a non-stale run of the same job exists
        """
        now = now or utc_now()
        with transaction_scope(self.session_factory) as db:
            running = (
                db.query(JobRun)
                .filter(and_(JobRun.job_name == job_name, JobRun.status == RUNNING))
                .with_for_update()
                .all()
            )
            for run in running:
                if now - self._last_seen(run) <= self.stale_after:
                    raise JobAlreadyRunningError(
                        f"Job '{job_name}' already running (run {run.id})",
                        details={"job_name": job_name, "run_id": run.id, "started_at": run.started_at.isoformat()},
                    )
                self._mark_failed(run, now, "Superseded after missing heartbeats")

            run = JobRun(job_name=job_name, status=RUNNING, started_at=now, heartbeat_at=now)
            db.add(run)
            db.flush()
            run_id = run.id

        logger.info(f"Job '{job_name}' started (run {run_id})")
        return run_id

    def heartbeat(self, run_id: int, items_processed: Optional[int] = None, now: Optional[datetime] = None) -> None:
        with transaction_scope(self.session_factory) as db:
            run = self._get(db, run_id)
            run.heartbeat_at = now or utc_now()
            if items_processed is not None:
                run.items_processed = items_processed

    def complete(
        self,
        run_id: int,
        items_processed: Optional[int] = None,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        with transaction_scope(self.session_factory) as db:
            run = self._get(db, run_id)
            if run.status != RUNNING:
                # The watchdog already failed it; keep its verdict
                logger.warning(f"Job run {run_id} finished after being marked {run.status}")
                return
            run.status = COMPLETED
            run.finished_at = now or utc_now()
            if items_processed is not None:
                run.items_processed = items_processed
            run.message = message
            elapsed = (run.finished_at - run.started_at).total_seconds()
            job_name = run.job_name

        logger.info(f"Job '{job_name}' completed (run {run_id}, items={items_processed}, {elapsed:.2f}s)")

    def fail(self, run_id: int, error: str, now: Optional[datetime] = None) -> None:
        with transaction_scope(self.session_factory) as db:
            run = self._get(db, run_id)
            if run.status != RUNNING:
                return
            self._mark_failed(run, now or utc_now(), error)
            job_name = run.job_name
        logger.error(f"Job '{job_name}' failed (run {run_id}): {error}")

    def sweep_stale(self, as_of: Optional[datetime] = None) -> int:
        """Watchdog: fail running jobs without a heartbeat inside the stale window."""
        as_of = as_of or utc_now()
        swept = 0
        with transaction_scope(self.session_factory) as db:
            for run in db.query(JobRun).filter(JobRun.status == RUNNING).with_for_update().all():
                if as_of - self._last_seen(run) > self.stale_after:
                    self._mark_failed(run, as_of, f"No heartbeat for over {self.stale_after}")
                    logger.warning(f"Watchdog failed stuck job '{run.job_name}' (run {run.id})")
                    swept += 1
        return swept

    def recent_runs(self, limit: int = 10) -> List[Dict[str, Any]]:
        with transaction_scope(self.session_factory) as db:
            runs = db.query(JobRun).order_by(desc(JobRun.started_at), desc(JobRun.id)).limit(limit).all()
            return [
                {
                    "id": run.id,
                    "job_name": run.job_name,
                    "status": run.status,
                    "started_at": run.started_at,
                    "finished_at": run.finished_at,
                    "items_processed": run.items_processed,
                    "error": run.error,
                }
                for run in runs
            ]

    @staticmethod
    def _mark_failed(run: JobRun, when: datetime, error: str) -> None:
        run.status = FAILED
        run.finished_at = when
        run.error = error

    @staticmethod
    def _get(db: Session, run_id: int) -> JobRun:
        run = db.get(JobRun, run_id)
        if run is None:
            raise RecordNotFoundError(f"Job run {run_id} not found")
        return run


class JobHandle:
    """Handle passed to a tracked job body."""

    def __init__(self, tracker: JobTracker, run_id: int):
        self.tracker = tracker
        self.run_id = run_id
        self.items_processed = 0
        self.message: Optional[str] = None

    def heartbeat(self, items_processed: Optional[int] = None) -> None:
        if items_processed is not None:
            self.items_processed = items_processed
        self.tracker.heartbeat(self.run_id, self.items_processed)


@contextmanager
def tracked_job(job_name: str, tracker: Optional[JobTracker] = None) -> Generator[JobHandle, None, None]:
    """
    Run a job body under a job_runs record.

    Usage:
        with tracked_job("run_detection") as job:
            ...
            job.items_processed = n
    """
    tracker = tracker or JobTracker()
    handle = JobHandle(tracker, tracker.start(job_name))
    with job_context(job_name, handle.run_id):
        try:
            yield handle
        except Exception as e:
            tracker.fail(handle.run_id, f"{type(e).__name__}: {e}")
            raise
    tracker.complete(handle.run_id, handle.items_processed, handle.message)
