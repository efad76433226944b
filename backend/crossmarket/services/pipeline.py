"""
Detection pipeline: align -> evaluate -> catalog -> predict -> aggregate -> swap.

Each (driver, target) evaluation commits on its own, so one bad pair never
aborts the run. Predictions are generated from a single catalog snapshot
taken after all evaluations, and the new prediction set plus its combined
alerts become current in one transaction. If anything before that commit
fails, the previous generation stays current.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session
from loguru import logger

from crossmarket.config import settings
from crossmarket.db.repositories import AlertRepository, PredictionRepository, PriceRepository
from crossmarket.db.session import transaction_scope
from crossmarket.domain.market import PricePoint
from crossmarket.domain.signals import Signal
from crossmarket.services.correlation_engine import CorrelationEngine
from crossmarket.services.detectors import EventSignalDetector, NewsItem, prediction_to_signal
from crossmarket.services.job_tracker import JobTracker, tracked_job
from crossmarket.services.pattern_catalog import PatternCatalog
from crossmarket.services.prediction_generator import PredictionGenerator
from crossmarket.services.session_aligner import SessionAligner
from crossmarket.services.session_calendar import SessionCalendar
from crossmarket.services.signal_aggregator import SignalAggregator
from crossmarket.services.significance_oracle import build_oracle
from crossmarket.utils.datetime import to_naive_utc, utc_now
from crossmarket.utils.errors import CrossMarketError

JOB_NAME = "run_detection"


class DetectionPipeline:
    """Full detection run over the configured driver/target universe."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        calendar: Optional[SessionCalendar] = None,
        aligner: Optional[SessionAligner] = None,
        engine: Optional[CorrelationEngine] = None,
        generator: Optional[PredictionGenerator] = None,
        aggregator: Optional[SignalAggregator] = None,
        event_detector: Optional[EventSignalDetector] = None,
        news_source: Optional[Callable[[], Sequence[NewsItem]]] = None,
        tracker: Optional[JobTracker] = None,
        lookback_days: int = 180,
    ):
        self.session_factory = session_factory
        self.calendar = calendar or SessionCalendar()
        self.aligner = aligner or SessionAligner()
        self.engine = engine or CorrelationEngine(oracle=build_oracle())
        self.generator = generator or PredictionGenerator(calendar=self.calendar)
        self.aggregator = aggregator or SignalAggregator()
        self.event_detector = event_detector or EventSignalDetector()
        self.news_source = news_source
        self.tracker = tracker or JobTracker(session_factory)
        self.lookback = timedelta(days=lookback_days)

    def run(self, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Trigger a detection run.

        Raises:
            JobAlreadyRunningError: another detection run holds the job lock
        """
        as_of = to_naive_utc(as_of or utc_now())
        stats: Dict[str, Any] = {
            "pairs_evaluated": 0,
            "patterns_admitted": 0,
            "pairs_failed": 0,
            "predictions": 0,
            "alerts": 0,
            "generation_id": None,
        }

        with tracked_job(JOB_NAME, self.tracker) as job:
            series_by_driver = self._load_driver_series(as_of)

            for driver, series in series_by_driver.items():
                windows = self.aligner.align(series, self.calendar)
                for target in settings.target_baskets.get(driver, []):
                    self._evaluate_pair(driver, target, windows, as_of, stats)
                job.heartbeat(stats["pairs_evaluated"])

            with transaction_scope(self.session_factory) as db:
                patterns = PatternCatalog(db).snapshot(settings.prediction_min_accuracy)

            predictions = []
            for driver, series in series_by_driver.items():
                move = self.aligner.current_move(series, self.calendar, as_of)
                if move is None:
                    logger.info(f"No current off-session move for {driver}; no prediction")
                    continue
                predictions.append(self.generator.generate(
                    driver,
                    move.move_pct,
                    patterns,
                    target_session_date=move.target_session_date,
                    as_of=as_of,
                ))

            if predictions:
                self._swap(predictions, job.run_id, stats)
            else:
                logger.warning("Detection run produced no predictions; keeping the current generation")

            job.items_processed = stats["predictions"]
            job.message = (
                f"pairs={stats['pairs_evaluated']} admitted={stats['patterns_admitted']} "
                f"failed={stats['pairs_failed']} predictions={stats['predictions']} alerts={stats['alerts']}"
            )

        logger.info(f"Detection run complete: {stats}")
        return stats

    def _load_driver_series(self, as_of: datetime) -> Dict[str, List[PricePoint]]:
        with transaction_scope(self.session_factory) as db:
            prices = PriceRepository(db)
            return {
                driver: prices.get_driver_series(driver, start=as_of - self.lookback, end=as_of)
                for driver in settings.driver_symbols
            }

    def _evaluate_pair(self, driver: str, target: str, windows, as_of: datetime, stats: Dict[str, Any]) -> None:
        try:
            with transaction_scope(self.session_factory) as db:
                target_prices = PriceRepository(db).get_target_prices(
                    target, start=(as_of - self.lookback).date(), end=as_of.date()
                )
                pairs = self.aligner.pair_moves(windows, target_prices)
                result = self.engine.evaluate(pairs, driver, target)
                PatternCatalog(db).register(result)
            stats["pairs_evaluated"] += 1
            if result.admissible:
                stats["patterns_admitted"] += 1
        except CrossMarketError as e:
            stats["pairs_failed"] += 1
            logger.error(f"Evaluation of {driver}->{target} failed: {e.message}")

    def _collect_signals(self, predictions) -> List[Signal]:
        signals = [s for s in (prediction_to_signal(p) for p in predictions) if s is not None]
        if self.news_source is None:
            return signals
        try:
            items = list(self.news_source())
        except Exception as e:
            # News is an external collaborator; without it the run still has correlation signals
            logger.warning(f"News source unavailable, skipping event detector: {e}")
            return signals
        event_signal = self.event_detector.detect(items)
        if event_signal is not None:
            signals.append(event_signal)
        return signals

    def _swap(self, predictions, job_run_id: int, stats: Dict[str, Any]) -> None:
        with transaction_scope(self.session_factory) as db:
            generation = PredictionRepository(db).replace_active_set(predictions, job_run_id=job_run_id)
            alerts = self.aggregator.combine_all(self._collect_signals(predictions))
            alert_repo = AlertRepository(db)
            for alert in alerts:
                alert_repo.add(alert, generation_id=generation.id)
            generation_id = generation.id

        stats["generation_id"] = generation_id
        stats["predictions"] = len(predictions)
        stats["alerts"] = len(alerts)
