"""
Tests for the TTL response cache.
"""

import pytest

from mlm_system.utils.response_cache import ResponseCache


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResponseCache(ttlSeconds=10, clock=clock)


class TestResponseCache:
    """Test expiry, copies and invalidation."""

    def test_expires_after_ttl(self, cache, clock):
        cache.set("k", {"a": 1})
        clock.now = 9.9
        assert cache.get("k") == {"a": 1}

        clock.now = 10
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_values_are_copies(self, cache):
        value = {"items": [1, 2]}
        cache.set("k", value)
        value["items"].append(3)

        cached = cache.get("k")
        cached["items"].clear()

        assert cache.get("k") == {"items": [1, 2]}

    @pytest.mark.asyncio
    async def test_get_or_set(self, cache):
        calls = []

        async def factory():
            calls.append(1)
            return {"n": len(calls)}

        first = await cache.getOrSet("k", factory)
        second = await cache.getOrSet("k", factory)

        assert first == second == {"n": 1}
        assert len(calls) == 1
        assert (cache.hits, cache.misses) == (1, 1)

    @pytest.mark.asyncio
    async def test_get_or_set_plain_function(self, cache):
        assert await cache.getOrSet("k", lambda: [1]) == [1]

    def test_invalidate_prefix(self, cache):
        cache.set("downline:1", 1)
        cache.set("downline:2", 2)
        cache.set("statistics:1", 3)

        assert cache.invalidate("downline:") == 2
        assert cache.get("statistics:1") == 3
        assert cache.invalidate() == 1

    def test_sweep(self, cache, clock):
        cache.set("old", 1)
        clock.now = 5
        cache.set("new", 2, ttlSeconds=100)
        clock.now = 20

        assert cache.sweep() == 1
        assert cache.get("new") == 2
