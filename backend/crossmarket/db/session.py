"""
Database session management with SQLAlchemy 2.0.

Provides engine configuration, session creation and context managers for
safe database access with automatic transaction rollback. Batch jobs open
one transaction per unit of work through `transaction_scope`.
"""

import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from loguru import logger

from crossmarket.config import settings
from crossmarket.utils.datetime import utc_now
from crossmarket.utils.errors import CrossMarketError, DatabaseError


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine with pooling settings suited to the backend.

    PostgreSQL gets a bounded pool with connect/statement timeouts so a stuck
    query cannot hang a batch job; SQLite gets the dialect defaults.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
        echo=echo,
        connect_args={
            "connect_timeout": 10,
            "options": "-c statement_timeout=60000",
        },
    )


engine = build_engine(settings.database_url, echo=settings.debug)

SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,  # Prevent lazy load issues after commit
)


def init_db(bind: Optional[Engine] = None) -> None:
    """Initialize database schema (create all tables).

    Note: This is idempotent - it only creates tables/indexes that don't exist.
    """
    from crossmarket.db.models import Base

    Base.metadata.create_all(bind=bind or engine, checkfirst=True)
    logger.info("Database schema initialized")


@contextmanager
def transaction_scope(
    session_factory: Optional[Callable[[], Session]] = None,
) -> Generator[Session, None, None]:
    """
    Run a unit of work in its own session and transaction.

    Usage:
        with transaction_scope(factory) as db:
            repo = PredictionRepository(db)
            repo.replace_active_set(predictions)

    Domain errors (CrossMarketError) propagate unchanged so callers can tell
    an invariant violation from a storage failure; anything else is wrapped
    in DatabaseError after rollback.
    """
    factory = session_factory or SessionLocal
    db = factory()
    try:
        yield db
        db.commit()
        logger.debug("Database transaction committed")
    except CrossMarketError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Database transaction rolled back: {e}")
        raise DatabaseError(f"Transaction failed: {e}") from e
    finally:
        db.close()


def check_db_health(bind: Optional[Engine] = None) -> Dict[str, Any]:
    """
    Perform a lightweight database health check.

    Returns:
        Health check results including connection status and latency
    """
    result = {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "latency_ms": None,
        "errors": [],
    }

    start_time = time.time()
    try:
        with (bind or engine).connect() as conn:
            conn.execute(text("SELECT 1"))
        result["latency_ms"] = round((time.time() - start_time) * 1000, 2)
    except Exception as e:
        result["status"] = "unhealthy"
        result["errors"].append(f"Connection test failed: {e}")

    return result
