"""Tests for the token bucket rate limiter."""

import pytest

from quantcore.core.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    def test_burst_then_empty(self):
        limiter = RateLimiter("test", calls_per_second=1.0, burst_size=3, clock=FakeClock())

        assert [limiter.try_acquire() for _ in range(4)] == [True, True, True, False]

    def test_refills_over_time(self):
        clock = FakeClock()
        limiter = RateLimiter("test", calls_per_second=2.0, burst_size=1, clock=clock)
        assert limiter.try_acquire()
        assert not limiter.try_acquire()

        clock.now += 0.5

        assert limiter.try_acquire()

    def test_refill_capped_at_burst(self):
        clock = FakeClock()
        limiter = RateLimiter("test", calls_per_second=10.0, burst_size=2, clock=clock)

        clock.now += 100

        assert limiter.status()["tokens_available"] == 2

    @pytest.mark.parametrize("rate,burst", [(0, 1), (-1, 1), (1, 0)])
    def test_invalid_configuration(self, rate, burst):
        with pytest.raises(ValueError):
            RateLimiter("bad", calls_per_second=rate, burst_size=burst)

    @pytest.mark.asyncio
    async def test_acquire_times_out(self):
        limiter = RateLimiter("test", calls_per_second=0.01, burst_size=1)
        assert await limiter.acquire(timeout=1.0)

        assert not await limiter.acquire(timeout=0.1)

    @pytest.mark.asyncio
    async def test_acquire_waits_for_token(self):
        limiter = RateLimiter("test", calls_per_second=50.0, burst_size=1)
        assert await limiter.acquire()

        assert await limiter.acquire(timeout=1.0)
