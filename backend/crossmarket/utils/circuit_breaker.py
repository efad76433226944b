"""
Circuit breaker for external price sources.

States:
- CLOSED: calls pass through
- OPEN: too many consecutive failures, calls are refused until the cooldown ends
- HALF_OPEN: cooldown over, a limited number of trial calls decide the next state
"""

import threading
from datetime import datetime
from typing import Optional

from loguru import logger

from crossmarket.utils.datetime import utc_now


class CircuitBreaker:
    """Per-source breaker so one dead feed fails fast instead of stalling a batch."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_timeout: int = 300,
        half_open_max_calls: int = 1,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls

        self._lock = threading.Lock()
        self._state = self.CLOSED
        self._failures = 0
        self._opened_at: Optional[datetime] = None
        self._trial_calls = 0

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == self.OPEN and self._opened_at is not None:
                if (utc_now() - self._opened_at).total_seconds() >= self.recovery_timeout:
                    self._state = self.HALF_OPEN
                    self._trial_calls = 0
                    logger.info(f"Feed breaker '{self.name}' half-open, allowing a trial call")
            return self._state

    def can_execute(self) -> bool:
        state = self.state
        if state == self.CLOSED:
            return True
        if state == self.HALF_OPEN:
            with self._lock:
                if self._trial_calls < self.half_open_max_calls:
                    self._trial_calls += 1
                    return True
        return False

    def record_success(self) -> None:
        with self._lock:
            if self._state != self.CLOSED:
                logger.info(f"Feed breaker '{self.name}' closed after a successful call")
            self._state = self.CLOSED
            self._failures = 0
            self._opened_at = None

    def record_failure(self, error: Optional[Exception] = None) -> None:
        with self._lock:
            self._failures += 1
            if self._state == self.HALF_OPEN or self._failures >= self.failure_threshold:
                if self._state != self.OPEN:
                    logger.warning(
                        f"Feed breaker '{self.name}' opened after {self._failures} failures"
                        + (f": {error}" if error else "")
                    )
                self._state = self.OPEN
                self._opened_at = utc_now()

