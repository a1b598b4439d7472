"""
Circuit breaker for outbound model backend calls.

One breaker guards each model tier:
- Opens when the error rate over a sliding window reaches the threshold
  (default 50% over 60 seconds, after at least 10 requests)
- Stays open for open_duration_seconds (default 30 seconds)
- Half-open: lets a fraction of calls through as probes; closes after
  enough successful probes, re-opens otherwise

A rejected call raises CircuitBreakerOpenError without touching the backend.
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from dependify.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Probing recovery


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and the call is rejected."""

    def __init__(self, name: str, state: CircuitState):
        super().__init__(f"Circuit breaker {name} is {state.name}. Call rejected.")
        self.name = name
        self.state = state


class CircuitBreaker:
    """
    Sliding-window circuit breaker for async callables.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: int = 60,
        open_duration_seconds: int = 30,
        half_open_test_percentage: float = 0.1,
        min_requests_for_threshold: int = 10,
        half_open_probes: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.half_open_test_percentage = half_open_test_percentage
        self.min_requests_for_threshold = min_requests_for_threshold
        self.half_open_probes = half_open_probes
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._history: Deque[Tuple[float, bool]] = deque()  # (timestamp, success)
        self._opened_at: Optional[float] = None
        self._half_open_seen = 0
        self._probe_successes = 0
        self._probe_failures = 0

    @property
    def state(self) -> CircuitState:
        """Get current circuit breaker state."""
        with self._lock:
            self._update_state()
            return self._state

    def _update_state(self) -> None:
        now = self._clock()

        cutoff = now - self.time_window_seconds
        while self._history and self._history[0][0] < cutoff:
            self._history.popleft()

        if self._state == CircuitState.OPEN:
            if self._opened_at is not None and (now - self._opened_at) >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._half_open_seen = 0
                self._probe_successes = 0
                self._probe_failures = 0
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

        elif self._state == CircuitState.CLOSED:
            total = len(self._history)
            if total >= self.min_requests_for_threshold:
                failures = sum(1 for _, success in self._history if not success)
                error_rate = failures / total
                if error_rate >= self.failure_threshold:
                    self._open(now)
                    logger.warning(
                        "circuit_breaker_opened",
                        circuit_breaker=self.name,
                        error_rate=error_rate,
                        failures=failures,
                        total=total,
                    )

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._history.clear()

    def _admit(self) -> None:
        """Raise CircuitBreakerOpenError unless this call may proceed."""
        with self._lock:
            self._update_state()
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(self.name, self._state)
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_seen += 1
                every = max(1, int(round(1 / self.half_open_test_percentage)))
                if self._half_open_seen % every != 0:
                    raise CircuitBreakerOpenError(self.name, self._state)

    def _record_result(self, success: bool) -> None:
        now = self._clock()

        with self._lock:
            if self._state != CircuitState.HALF_OPEN:
                self._history.append((now, success))
                self._update_state()
                return

            if success:
                self._probe_successes += 1
            else:
                self._probe_failures += 1

            if self._probe_successes + self._probe_failures < self.half_open_probes:
                return

            # Majority of probes must succeed to close
            if self._probe_successes * 2 > self.half_open_probes:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                logger.info(
                    "circuit_breaker_closed",
                    circuit_breaker=self.name,
                    success_count=self._probe_successes,
                    failure_count=self._probe_failures,
                )
            else:
                self._open(now)
                logger.warning(
                    "circuit_breaker_reopened",
                    circuit_breaker=self.name,
                    success_count=self._probe_successes,
                    failure_count=self._probe_failures,
                )

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await func(*args, **kwargs) under circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: if the circuit rejects the call
        """
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_result(False)
            raise
        self._record_result(True)
        return result

    def reset(self) -> None:
        """Force the breaker back to CLOSED and forget history."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._opened_at = None
            self._history.clear()

    def get_metrics(self) -> dict:
        """Get circuit breaker metrics for monitoring."""
        with self._lock:
            self._update_state()
            failures = sum(1 for _, success in self._history if not success)
            total = len(self._history)

            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total > 0 else 0.0,
                "opened_at": self._opened_at,
                "half_open_successes": self._probe_successes,
                "half_open_failures": self._probe_failures,
            }
