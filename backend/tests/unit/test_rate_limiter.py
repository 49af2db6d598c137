"""
Tests for the shared token-bucket rate limiter.
"""

import asyncio

import pytest

from services.rate_limiter import TokenBucket


class FakeTime:
    """Monotonic time that only moves when the limiter sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture
def fake_time():
    return FakeTime()


class TestTokenBucket:
    """Tests for TokenBucket."""

    async def test_burst_up_to_capacity_without_waiting(self, fake_time):
        bucket = TokenBucket(5, 1.0, time_func=fake_time, sleep=fake_time.sleep)

        for _ in range(5):
            await bucket.acquire()

        assert fake_time.sleeps == []
        assert bucket.available == pytest.approx(0.0)

    async def test_waits_for_refill_when_empty(self, fake_time):
        bucket = TokenBucket(2, 4.0, time_func=fake_time, sleep=fake_time.sleep)

        for _ in range(3):
            await bucket.acquire()

        assert fake_time.sleeps == [pytest.approx(0.25)]
        assert fake_time.now == pytest.approx(0.25)

    async def test_refill_never_exceeds_capacity(self, fake_time):
        bucket = TokenBucket(3, 10.0, time_func=fake_time, sleep=fake_time.sleep)
        await bucket.acquire()

        fake_time.now += 3600

        assert bucket.available == pytest.approx(3.0)

    async def test_concurrent_tasks_respect_rate(self, fake_time):
        capacity, rate = 10, 5.0
        bucket = TokenBucket(capacity, rate, time_func=fake_time, sleep=fake_time.sleep)
        acquired_at: list[float] = []

        async def worker():
            await bucket.acquire()
            acquired_at.append(fake_time.now)

        await asyncio.gather(*(worker() for _ in range(1000)))

        assert len(acquired_at) == 1000
        # Nothing beyond the initial burst before the first refill interval
        assert sum(1 for t in acquired_at if t < 1 / rate) == capacity
        # Never more than the burst plus what has refilled so far
        for count, t in enumerate(sorted(acquired_at), start=1):
            assert count <= capacity + rate * t + 1e-6

    @pytest.mark.parametrize("capacity,rate", [(0, 1.0), (5, 0.0), (5, -1.0)])
    def test_rejects_invalid_configuration(self, capacity, rate):
        with pytest.raises(ValueError):
            TokenBucket(capacity, rate)
