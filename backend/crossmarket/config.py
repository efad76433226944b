"""
Configuration management for CrossMarket Radar using Pydantic Settings.

Loads configuration from environment variables with type validation and sane defaults.
"""

from datetime import date, time
from typing import Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# NYSE full-day closures. Override with MARKET_HOLIDAYS=YYYY-MM-DD,YYYY-MM-DD,...
DEFAULT_MARKET_HOLIDAYS = [
    "2024-01-01", "2024-01-15", "2024-02-19", "2024-03-29", "2024-05-27",
    "2024-06-19", "2024-07-04", "2024-09-02", "2024-11-28", "2024-12-25",
    "2025-01-01", "2025-01-09", "2025-01-20", "2025-02-17", "2025-04-18",
    "2025-05-26", "2025-06-19", "2025-07-04", "2025-09-01", "2025-11-27",
    "2025-12-25",
    "2026-01-01", "2026-01-19", "2026-02-16", "2026-04-03", "2026-05-25",
    "2026-06-19", "2026-07-03", "2026-09-07", "2026-11-26", "2026-12-25",
]


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application configuration with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: str = Field(default="development", description="Environment: development, staging, production")
    debug: bool = Field(default=False, description="Debug mode")

    # Database
    database_url: str = Field(default="sqlite:///./crossmarket.db", description="SQLAlchemy connection URL")

    # Logging
    log_level: str = Field(default="INFO", description="Log level: DEBUG, INFO, WARNING, ERROR")
    log_format: str = Field(default="text", description="Log format: json or text")
    log_file: str = Field(default="logs/crossmarket.log", description="Log file path (empty disables file logging)")

    # Market universe
    driver_symbols: str = Field(default="BTC,ETH,SOL", validate_default=True, description="Continuously traded driver assets (comma-separated)")
    target_baskets: Dict[str, List[str]] = Field(
        default={
            "BTC": ["COIN", "MSTR", "MARA", "RIOT", "CLSK", "NVDA", "TSLA", "AMD", "META", "QQQ", "SPY"],
            "ETH": ["COIN", "NVDA", "AMD", "QQQ", "SPY"],
            "SOL": ["COIN", "HOOD", "SPY"],
        },
        description="Driver symbol -> target tickers evaluated for correlation",
    )
    benchmark_symbol: str = Field(default="SPY", description="Target used when a prediction has no pattern")

    # Target-market session calendar
    session_timezone: str = Field(default="America/New_York")
    session_open: time = Field(default=time(9, 30))
    session_close: time = Field(default=time(16, 0))
    market_holidays: str = Field(default=",".join(DEFAULT_MARKET_HOLIDAYS), validate_default=True, description="Full-day closures (comma-separated ISO dates)")

    # Alignment and correlation thresholds
    match_tolerance_days: float = Field(default=1.0, description="Max gap between window end and session open")
    max_observation_gap_hours: float = Field(default=12.0, description="Driver gap that invalidates a window")
    min_sample_size: int = Field(default=30, description="Minimum aligned pairs for admission")
    min_abs_coefficient: float = Field(default=0.3, description="|r| above which a pattern qualifies")
    min_directional_accuracy: float = Field(default=60.0, description="Directional accuracy (0-100) above which a pattern qualifies")

    # Predictions
    prediction_min_accuracy: float = Field(default=65.0, description="Minimum pattern accuracy used for forecasts")
    prediction_expiry_days: int = Field(default=3, description="Pending predictions older than this expire")

    # Signal aggregation
    combined_confidence_boost: float = Field(default=1.15)
    combined_confidence_cap: float = Field(default=0.95)
    combined_ticker_cap: int = Field(default=15)
    signal_min_confidence: float = Field(default=0.70, description="Minimum prediction confidence emitted as a signal")

    # Significance oracle
    oracle_enabled: bool = Field(default=False, description="Consult the LLM significance oracle")
    oracle_url: str = Field(default="https://api.openai.com/v1/chat/completions")
    oracle_api_key: str = Field(default="", description="API key for the oracle endpoint")
    oracle_model: str = Field(default="gpt-4o-mini")
    oracle_timeout_seconds: float = Field(default=10.0)
    oracle_can_veto: bool = Field(default=True, description="Allow the oracle to veto statistically admissible patterns")

    # Price feeds
    coingecko_base_url: str = Field(default="https://api.coingecko.com/api/v3")
    feed_timeout_seconds: float = Field(default=10.0)
    feed_retry_attempts: int = Field(default=3)

    # Scheduler and jobs
    scheduler_enabled: bool = Field(default=True, description="Enable background scheduler")
    driver_ingest_interval_minutes: int = Field(default=60)
    job_stale_after_minutes: int = Field(default=30, description="Running jobs older than this are failed by the watchdog")
    generation_retention: int = Field(default=5, description="Superseded prediction generations kept before GC")

    @field_validator("driver_symbols")
    @classmethod
    def parse_driver_symbols(cls, v: str) -> List[str]:
        """Parse comma-separated driver symbols into an upper-cased list."""
        return [s.upper() for s in _split_csv(v)]

    @field_validator("market_holidays")
    @classmethod
    def parse_market_holidays(cls, v: str) -> List[date]:
        """Parse comma-separated ISO dates into a list of dates."""
        return [date.fromisoformat(d) for d in _split_csv(v)]

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"


# Global settings instance
settings = Settings()
