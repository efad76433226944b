"""Background scheduler wiring the batch tasks to their schedules."""

from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from crossmarket import tasks
from crossmarket.config import settings

scheduler = BackgroundScheduler(timezone="UTC")


def _guarded(name: str, task: Callable[[], object]) -> Callable[[], None]:
    def job():
        try:
            task()
        except Exception as e:
            # Keep the scheduler thread alive; the next trigger retries from durable state
            logger.exception(f"Scheduled job '{name}' failed: {e}")

    job.__name__ = f"scheduled_{name}"
    return job


def register_jobs(target: BackgroundScheduler = scheduler) -> BackgroundScheduler:
    """Register every batch task on the given scheduler."""
    tz = settings.session_timezone

    target.add_job(
        _guarded("ingest_driver_prices", tasks.run_driver_ingestion),
        trigger=IntervalTrigger(minutes=settings.driver_ingest_interval_minutes),
        id="ingest_driver_prices",
        name="Driver price ingestion",
        replace_existing=True,
    )
    logger.info(f"Added driver ingestion job (every {settings.driver_ingest_interval_minutes} minutes)")

    # After the close, once daily bars are published
    target.add_job(
        _guarded("ingest_target_prices", tasks.run_target_ingestion),
        trigger=CronTrigger(day_of_week="mon-fri", hour=16, minute=20, timezone=tz),
        id="ingest_target_prices",
        name="Target session ingestion",
        replace_existing=True,
    )
    logger.info("Added target ingestion job (weekdays 16:20 exchange time)")

    # Before the open, so predictions cover the coming session
    target.add_job(
        _guarded("run_detection", tasks.run_detection),
        trigger=CronTrigger(day_of_week="mon-fri", hour=8, minute=45, timezone=tz),
        id="run_detection",
        name="Detection run",
        replace_existing=True,
    )
    logger.info("Added detection job (weekdays 08:45 exchange time)")

    target.add_job(
        _guarded("validate_predictions", tasks.run_validation),
        trigger=CronTrigger(day_of_week="mon-fri", hour=16, minute=45, timezone=tz),
        id="validate_predictions",
        name="Prediction validation",
        replace_existing=True,
    )
    logger.info("Added validation job (weekdays 16:45 exchange time)")

    target.add_job(
        _guarded("expire_predictions", tasks.run_expiry_sweep),
        trigger=IntervalTrigger(hours=1),
        id="expire_predictions",
        name="Prediction expiry sweep",
        replace_existing=True,
    )

    target.add_job(
        _guarded("job_watchdog", tasks.run_watchdog),
        trigger=IntervalTrigger(minutes=5),
        id="job_watchdog",
        name="Stuck job watchdog",
        replace_existing=True,
    )

    target.add_job(
        _guarded("generation_gc", tasks.run_generation_gc),
        trigger=CronTrigger(hour=2, minute=0, timezone=tz),
        id="generation_gc",
        name="Prediction generation GC",
        replace_existing=True,
    )
    logger.info("Added expiry sweep (hourly), watchdog (5 min) and generation GC (daily 02:00)")
    return target


def start_scheduler() -> None:
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled by configuration")
        return
    register_jobs(scheduler)
    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
