"""
Rolling-window circuit breaker for the upstream search endpoint.

States:
- closed: calls pass; outcomes are recorded in a sliding time window.
- open: calls are rejected until the cooldown elapses.
- half_open: a single trial call is let through. Success closes the
  breaker, failure re-opens it for another cooldown.

Shared by all batches in the process. Every method runs synchronously on the
event loop (no await inside), so state changes are atomic with respect to
other coroutines.
"""

import logging
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


class CircuitBreaker:
    """Opens when the failure rate over the window reaches the threshold."""

    def __init__(
        self,
        window_seconds: float = 60.0,
        min_calls: int = 5,
        failure_threshold: float = 0.5,
        cooldown_seconds: float = 60.0,
        time_func: Callable[[], float] = time.monotonic,
    ):
        if not 0 < failure_threshold <= 1:
            raise ValueError("failure_threshold must be in (0, 1]")
        self.window_seconds = window_seconds
        self.min_calls = max(1, min_calls)
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._time = time_func
        self._calls: deque[tuple[float, bool]] = deque()
        self._state = CLOSED
        self._opened_at = 0.0
        self._trial_in_flight = False

    def _prune(self, now: float) -> None:
        horizon = now - self.window_seconds
        while self._calls and self._calls[0][0] < horizon:
            self._calls.popleft()

    @property
    def state(self) -> str:
        if self._state == OPEN and self._time() - self._opened_at >= self.cooldown_seconds:
            self._state = HALF_OPEN
            self._trial_in_flight = False
            logger.info("Circuit breaker half-open, allowing a trial request")
        return self._state

    @property
    def failure_rate(self) -> float:
        self._prune(self._time())
        if not self._calls:
            return 0.0
        failures = sum(1 for _, ok in self._calls if not ok)
        return failures / len(self._calls)

    def allow_request(self) -> bool:
        """Whether a request may be attempted now."""
        state = self.state
        if state == CLOSED:
            return True
        if state == HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        now = self._time()
        if self._state == HALF_OPEN:
            self._close()
            return
        self._calls.append((now, True))
        self._prune(now)

    def record_failure(self) -> None:
        now = self._time()
        if self._state == HALF_OPEN:
            self._open(now)
            return
        if self._state == OPEN:
            return
        self._calls.append((now, False))
        self._prune(now)
        if len(self._calls) >= self.min_calls and self.failure_rate >= self.failure_threshold:
            self._open(now)

    def release(self) -> None:
        """Give back a half-open trial that ended without an upstream outcome."""
        if self._state == HALF_OPEN:
            self._trial_in_flight = False

    def _open(self, now: float) -> None:
        self._state = OPEN
        self._opened_at = now
        self._trial_in_flight = False
        logger.warning(
            "Circuit breaker opened for %.0fs (%d calls in window)",
            self.cooldown_seconds,
            len(self._calls),
        )

    def _close(self) -> None:
        self._state = CLOSED
        self._calls.clear()
        self._trial_in_flight = False
        logger.info("Circuit breaker closed after successful trial")

    def reset(self) -> None:
        self._close()
