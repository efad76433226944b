"""
Custom exceptions for CrossMarket Radar.

The taxonomy separates transient data problems (waiting for data, a source
being down) from invariant violations (a caller bug) so monitoring can tell
them apart.
"""

from typing import Optional, Dict, Any


class CrossMarketError(Exception):
    """Base exception for all CrossMarket Radar errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for callers of the query surface."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# ============================================================================
# Source Failures
# ============================================================================

class ExternalServiceError(CrossMarketError):
    """External collaborator (feed, calendar, oracle) failed."""
    pass


class CalendarError(ExternalServiceError):
    """Target session calendar unavailable or inconsistent."""
    pass


class OracleError(ExternalServiceError):
    """Significance oracle timed out or answered with a malformed verdict."""
    pass


# ============================================================================
# Invariant Violations
# ============================================================================

class InvariantViolationError(CrossMarketError):
    """A state-machine or admission invariant was violated by the caller."""
    pass


class PredictionStateError(InvariantViolationError):
    """Illegal prediction transition (e.g. validating a terminal prediction)."""

    def __init__(self, message: str, prediction_id: Optional[int] = None,
                 status: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.prediction_id = prediction_id
        self.status = status
        self.details.setdefault("prediction_id", prediction_id)
        self.details.setdefault("status", status)


class PatternAdmissionError(InvariantViolationError):
    """Attempted to admit a pattern that fails the admission thresholds."""
    pass


# ============================================================================
# Database Errors
# ============================================================================

class DatabaseError(CrossMarketError):
    """Database operation failed."""
    pass


class RecordNotFoundError(DatabaseError):
    """Database record not found."""
    pass


class ConcurrentUpdateError(DatabaseError):
    """A versioned row was modified by another writer."""
    pass


# ============================================================================
# Job Errors
# ============================================================================

class JobAlreadyRunningError(CrossMarketError):
    """A batch job with the same name is already running."""
    pass
