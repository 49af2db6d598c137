"""
Token-bucket rate limiter for outbound search requests.

One instance is shared by every batch in the process (it is built once by the
engine factory and injected into the fetcher), so concurrent batches from
different tenants draw on the same physical budget for the upstream endpoint.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Bucket of ``capacity`` tokens refilling continuously at ``refill_rate``
    tokens per second. Each acquisition consumes one token and suspends the
    caller until one is available.

    The lock serializes waiters, so they are served in arrival order and no
    more than ``capacity`` acquisitions complete before the first refill.
    """

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        time_func: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        self.capacity = capacity
        self.refill_rate = refill_rate
        self._time = time_func
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated_at = time_func()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._time()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._updated_at = now

    @property
    def available(self) -> float:
        """Tokens available right now (fractional while refilling)."""
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        """Take one token, waiting for the refill when the bucket is empty."""
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                wait = (1 - self._tokens) / self.refill_rate
                logger.debug("Rate limiter empty, waiting %.2fs", wait)
                await self._sleep(wait)
