"""
Tests for the fixed-window rate limiter.
"""

import asyncio

import pytest

from mlm_system.errors import RateLimitExceeded
from mlm_system.utils.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(maxRequests=3, windowSeconds=60, clock=clock)


class TestWindow:
    """Test counting within and across windows."""

    def test_allows_up_to_limit(self, limiter):
        assert [limiter.hit("a") for _ in range(4)] == [True, True, True, False]
        assert limiter.remaining("a") == 0

    def test_window_resets(self, limiter, clock):
        for _ in range(3):
            limiter.hit("a")
        assert not limiter.hit("a")

        clock.now += 60

        assert limiter.hit("a")
        assert limiter.remaining("a") == 2

    def test_keys_are_independent(self, limiter):
        for _ in range(3):
            limiter.hit("a")

        assert limiter.hit("b")

    def test_enforce_raises_with_retry_after(self, limiter, clock):
        for _ in range(3):
            limiter.enforce("a")
        clock.now += 15

        with pytest.raises(RateLimitExceeded) as exc:
            limiter.enforce("a")
        assert exc.value.retryAfter == 45

    def test_reset(self, limiter):
        for _ in range(3):
            limiter.hit("a")
        limiter.reset("a")

        assert limiter.hit("a")


class TestFailOpen:
    """Internal errors never block a request."""

    def test_broken_clock_allows(self):
        def brokenClock():
            raise RuntimeError("clock unavailable")

        limiter = RateLimiter(maxRequests=1, windowSeconds=60, clock=brokenClock)

        assert limiter.hit("a")
        assert limiter.hit("a")
        limiter.enforce("a")


class TestSweep:
    """Test expiry of idle windows."""

    def test_sweep_drops_expired(self, limiter, clock):
        limiter.hit("a")
        clock.now += 30
        limiter.hit("b")
        clock.now += 30

        assert limiter.sweep() == 1
        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_background_task_lifecycle(self, clock):
        limiter = RateLimiter(maxRequests=1, windowSeconds=1, cleanupInterval=0.01, clock=clock)
        limiter.hit("a")
        clock.now += 5

        await limiter.start()
        assert limiter.isRunning
        await asyncio.sleep(0.05)
        await limiter.stop()

        assert not limiter.isRunning
        assert len(limiter) == 0
