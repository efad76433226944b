"""
SQLAlchemy 2.0 database models for CrossMarket Radar.

Tables cover raw driver/target prices, the pattern catalog, the prediction
lifecycle (with generation-tagged active sets), combined alerts and batch
job runs. All timestamps are naive UTC.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from crossmarket.utils.datetime import utc_now

Base = declarative_base()


# ==================== PRICE STORE ====================

class DriverPrice(Base):
    """Continuously traded driver observation (append-only per symbol)."""

    __tablename__ = "driver_prices"
    __table_args__ = (
        UniqueConstraint("symbol", "timestamp", name="uix_driver_price_symbol_ts"),
        Index("ix_driver_prices_symbol_ts", "symbol", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    price = Column(Float, nullable=False)
    is_session_open = Column(Boolean, default=False, nullable=False)
    is_session_close = Column(Boolean, default=False, nullable=False)
    source = Column(String, nullable=True)
    created_at = Column(DateTime, default=utc_now)

    def __repr__(self) -> str:
        return f"<DriverPrice(symbol={self.symbol}, ts={self.timestamp}, price={self.price})>"


class TargetPrice(Base):
    """One target-market session bar: open, close and the prior session's close."""

    __tablename__ = "target_prices"
    __table_args__ = (
        UniqueConstraint("symbol", "session_date", name="uix_target_price_symbol_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String, nullable=False, index=True)
    session_date = Column(Date, nullable=False, index=True)
    open = Column(Float, nullable=False)
    close = Column(Float, nullable=True)
    prior_close = Column(Float, nullable=True)
    source = Column(String, nullable=True)
    created_at = Column(DateTime, default=utc_now)

    @property
    def gap_pct(self):
        """Open versus prior close in percent, or None without a prior close."""
        if not self.prior_close:
            return None
        return (self.open - self.prior_close) / self.prior_close * 100.0

    @property
    def session_change_pct(self):
        """Close versus prior close in percent, or None when either is missing."""
        if not self.prior_close or self.close is None:
            return None
        return (self.close - self.prior_close) / self.prior_close * 100.0

    def __repr__(self) -> str:
        return f"<TargetPrice(symbol={self.symbol}, date={self.session_date}, open={self.open})>"


# ==================== PATTERN CATALOG ====================

class CorrelationPattern(Base):
    """Driver -> target correlation tracked by the catalog.

    `version` backs optimistic concurrency: every flush of a changed row checks
    and bumps it, so two writers racing on the same pattern cannot both win.
    """

    __tablename__ = "correlation_patterns"
    __table_args__ = (
        UniqueConstraint("driver_symbol", "target_symbol", name="uix_pattern_driver_target"),
        CheckConstraint("coefficient >= -1 AND coefficient <= 1", name="ck_pattern_coefficient_range"),
        CheckConstraint("accuracy_rate >= 0 AND accuracy_rate <= 100", name="ck_pattern_accuracy_range"),
        CheckConstraint("sample_size >= 0", name="ck_pattern_sample_size"),
        Index("ix_correlation_patterns_status_active", "status", "is_active"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_symbol = Column(String, nullable=False)
    target_symbol = Column(String, nullable=False)
    coefficient = Column(Float, nullable=False, default=0.0)
    sample_size = Column(Integer, nullable=False, default=0)
    accuracy_rate = Column(Float, nullable=False, default=0.0)
    avg_driver_move = Column(Float, nullable=True)
    avg_target_move = Column(Float, nullable=True)
    # Latest detection-run statistics; accuracy_rate/sample_size roll forward from validations
    pair_count = Column(Integer, nullable=True)
    directional_accuracy = Column(Float, nullable=True)
    status = Column(String, nullable=False, default="rejected")  # admitted, rejected
    is_active = Column(Boolean, nullable=False, default=False)
    oracle_verdict = Column(Boolean, nullable=True)
    description = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utc_now)
    last_updated = Column(DateTime, default=utc_now, onupdate=utc_now)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<CorrelationPattern(id={self.id}, {self.driver_symbol}->{self.target_symbol}, "
            f"r={self.coefficient}, acc={self.accuracy_rate}, n={self.sample_size}, status={self.status})>"
        )


# ==================== PREDICTIONS ====================

class PredictionGeneration(Base):
    """One detection run's prediction set. Readers only see the current one."""

    __tablename__ = "prediction_generations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_run_id = Column(Integer, ForeignKey("job_runs.id"), nullable=True)
    prediction_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now, index=True)

    def __repr__(self) -> str:
        return f"<PredictionGeneration(id={self.id}, predictions={self.prediction_count})>"


class GenerationPointer(Base):
    """Named pointer to the current generation, flipped inside the swap transaction."""

    __tablename__ = "generation_pointers"

    name = Column(String, primary_key=True)
    generation_id = Column(Integer, ForeignKey("prediction_generations.id"), nullable=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    def __repr__(self) -> str:
        return f"<GenerationPointer(name={self.name}, generation_id={self.generation_id})>"


class Prediction(Base):
    """Directional prediction for the next target session.

    Lifecycle: pending -> validated | expired. Both terminal states are final.
    """

    __tablename__ = "predictions"
    __table_args__ = (
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_prediction_confidence_range"),
        Index("ix_predictions_status_created", "status", "created_at"),
        Index("ix_predictions_generation", "generation_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    pattern_id = Column(Integer, ForeignKey("correlation_patterns.id"), nullable=True)
    generation_id = Column(Integer, ForeignKey("prediction_generations.id"), nullable=True)
    driver_symbol = Column(String, nullable=False)
    target_symbol = Column(String, nullable=False)
    target_session_date = Column(Date, nullable=True)
    driver_move_pct = Column(Float, nullable=False)
    predicted_direction = Column(String, nullable=False)
    confidence = Column(Float, nullable=False)
    per_ticker_forecasts = Column(JSON, nullable=False, default=list)
    status = Column(String, nullable=False, default="pending", index=True)
    actual_outcome = Column(Float, nullable=True)
    direction_correct = Column(Boolean, nullable=True)
    ticker_accuracy = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    validated_at = Column(DateTime, nullable=True)

    pattern = relationship("CorrelationPattern", backref="predictions")
    generation = relationship("PredictionGeneration", backref="predictions")

    def __repr__(self) -> str:
        return (
            f"<Prediction(id={self.id}, {self.driver_symbol} {self.driver_move_pct}% -> "
            f"{self.predicted_direction}, status={self.status})>"
        )


class CombinedAlert(Base):
    """Alert formed when independent signals agree. Insert-only."""

    __tablename__ = "combined_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    generation_id = Column(Integer, ForeignKey("prediction_generations.id"), nullable=True)
    component_ids = Column(JSON, nullable=False)
    direction = Column(Integer, nullable=False)  # -1 down, 1 up
    severity = Column(String, nullable=False)
    confidence = Column(Float, nullable=False)
    merged_forecasts = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utc_now, index=True)

    def __repr__(self) -> str:
        return f"<CombinedAlert(id={self.id}, severity={self.severity}, confidence={self.confidence})>"


# ==================== JOBS ====================

class JobRun(Base):
    """Batch job execution record used for locking and the stuck-job watchdog."""

    __tablename__ = "job_runs"
    __table_args__ = (
        Index("ix_job_runs_name_status", "job_name", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="running")  # running, completed, failed
    started_at = Column(DateTime, nullable=False, default=utc_now)
    heartbeat_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    items_processed = Column(Integer, nullable=True)
    message = Column(Text, nullable=True)
    error = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<JobRun(id={self.id}, job={self.job_name}, status={self.status})>"
