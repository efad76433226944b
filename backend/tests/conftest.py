"""
Shared pytest fixtures for the CrossMarket Radar test suite.

Each test gets a fresh SQLite file database with the full schema, a session
factory for code that opens its own transactions, and a plain session for
direct setup and assertions.
"""

import os
import sys
import tempfile
from datetime import date, datetime

import pytest

# Keep test runs off the default database and log file
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ORACLE_ENABLED", "false")

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from crossmarket.db.models import Base, CorrelationPattern, Prediction
from crossmarket.domain.predictions import ADMITTED, PENDING
from crossmarket.services.session_calendar import SessionCalendar


@pytest.fixture(scope="function")
def db_engine():
    """Temporary file database with all tables created."""
    temp_file = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    temp_file.close()
    db_path = temp_file.name

    engine = create_engine(f"sqlite:///{db_path}", echo=False)
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()
    os.unlink(db_path)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Factory handed to services that manage their own transactions."""
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def calendar():
    """NYSE-style calendar with an explicit holiday list for January 2025."""
    return SessionCalendar(holidays=[date(2025, 1, 1), date(2025, 1, 9), date(2025, 1, 20)])


@pytest.fixture
def make_pattern(db_session):
    """Insert a correlation pattern row and return it."""
    def _make(driver="BTC", target="COIN", coefficient=0.8, accuracy=75.0, sample_size=40,
              status=ADMITTED, is_active=True):
        pattern = CorrelationPattern(
            driver_symbol=driver,
            target_symbol=target,
            coefficient=coefficient,
            sample_size=sample_size,
            accuracy_rate=accuracy,
            status=status,
            is_active=is_active,
        )
        db_session.add(pattern)
        db_session.commit()
        return pattern
    return _make


@pytest.fixture
def make_prediction(db_session):
    """Insert a pending prediction row and return it."""
    def _make(pattern_id=None, direction="strong_down", move=-6.2, target="COIN",
              session_date=date(2025, 3, 4), forecasts=None, created_at=None, generation_id=None):
        prediction = Prediction(
            pattern_id=pattern_id,
            generation_id=generation_id,
            driver_symbol="BTC",
            target_symbol=target,
            target_session_date=session_date,
            driver_move_pct=move,
            predicted_direction=direction,
            confidence=0.85,
            per_ticker_forecasts=forecasts if forecasts is not None else [],
            status=PENDING,
            created_at=created_at or datetime(2025, 3, 4, 12, 0),
        )
        db_session.add(prediction)
        db_session.commit()
        return prediction
    return _make
