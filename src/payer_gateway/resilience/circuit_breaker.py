"""
Per-partner circuit breaker.

OPEN breakers move to HALF_OPEN lazily: the transition happens on the first
state read after the reset timeout, with no background timer.
"""

import threading
import time
from collections.abc import Callable

from ..enums import CircuitState
from ..exceptions import CircuitOpenError
from ..logger import get_logger
from ..models import CircuitBreakerRecord

logger = get_logger(__name__)


class CircuitBreaker:
    """Circuit breaker guarding calls to a single partner."""

    def __init__(
        self,
        partner_id: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.partner_id = partner_id
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure: float | None = None
        self._lock = threading.Lock()

    def _refresh(self) -> None:
        """OPEN -> HALF_OPEN once the reset timeout has elapsed. Caller holds the lock."""
        if (
            self._state is CircuitState.OPEN
            and self._last_failure is not None
            and self._clock() - self._last_failure >= self.reset_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            logger.info(
                "Circuit breaker transitioning to HALF_OPEN", partner_id=self.partner_id
            )

    @property
    def state(self) -> CircuitState:
        return self.current_state()

    @property
    def failures(self) -> int:
        return self._failures

    def current_state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    def allow(self) -> bool:
        """Whether a call may be dispatched now."""
        return self.current_state() is not CircuitState.OPEN

    def guard(self) -> None:
        """Raise CircuitOpenError if the breaker is OPEN."""
        if not self.allow():
            raise CircuitOpenError(self.partner_id, self.retry_after())

    def retry_after(self) -> float:
        """Seconds until an OPEN breaker will admit a probe."""
        with self._lock:
            if self._state is not CircuitState.OPEN or self._last_failure is None:
                return 0.0
            return max(0.0, self.reset_timeout - (self._clock() - self._last_failure))

    def record_outcome(self, success: bool) -> None:
        with self._lock:
            self._refresh()
            if success:
                self._record_success()
            else:
                self._record_failure()

    def record_success(self) -> None:
        self.record_outcome(True)

    def record_failure(self) -> None:
        self.record_outcome(False)

    def _record_success(self) -> None:
        self._failures = 0
        self._last_failure = None
        if self._state is not CircuitState.CLOSED:
            logger.info("Circuit breaker reset to CLOSED", partner_id=self.partner_id)
            self._state = CircuitState.CLOSED

    def _record_failure(self) -> None:
        self._failures += 1
        self._last_failure = self._clock()

        if self._state is CircuitState.HALF_OPEN:
            logger.warning(
                "Circuit breaker re-opened after half-open failure",
                partner_id=self.partner_id,
            )
            self._state = CircuitState.OPEN
        elif self._state is CircuitState.CLOSED and self._failures >= self.failure_threshold:
            logger.warning(
                "Circuit breaker opened due to failures",
                partner_id=self.partner_id,
                failure_count=self._failures,
            )
            self._state = CircuitState.OPEN

    def snapshot(self) -> CircuitBreakerRecord:
        with self._lock:
            self._refresh()
            return CircuitBreakerRecord(
                partner_id=self.partner_id,
                state=self._state,
                failures=self._failures,
                last_failure=self._last_failure,
                reset_timeout=self.reset_timeout,
                failure_threshold=self.failure_threshold,
            )

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._last_failure = None
        logger.info("Circuit breaker manually reset", partner_id=self.partner_id)
