# mlm_system/utils/response_cache.py
"""
TTL cache for read responses.
"""
from typing import Any, Callable, Dict, Optional, Tuple
import asyncio
import copy
import time
import logging

from mlm_system.utils.sweeper import PeriodicSweeper

logger = logging.getLogger(__name__)


class ResponseCache(PeriodicSweeper):
    """
    Key -> (expiresAt, value) store. Values are deep-copied on the way in and
    out so callers can never mutate a cached response.
    """

    def __init__(
            self,
            ttlSeconds: float,
            cleanupInterval: float = 600,
            clock: Callable[[], float] = time.monotonic
    ):
        super().__init__(cleanupInterval)
        self.ttlSeconds = ttlSeconds
        self.clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        expiresAt, value = entry
        if self.clock() >= expiresAt:
            del self._entries[key]
            return None
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttlSeconds: Optional[float] = None):
        ttl = self.ttlSeconds if ttlSeconds is None else ttlSeconds
        self._entries[key] = (self.clock() + ttl, copy.deepcopy(value))

    async def getOrSet(self, key: str, factory: Callable, ttlSeconds: Optional[float] = None) -> Any:
        """Return cached value for key, or compute it with factory and store it."""
        cached = self.get(key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        value = factory()
        if asyncio.iscoroutine(value):
            value = await value

        self.set(key, value, ttlSeconds)
        return copy.deepcopy(value)

    def invalidate(self, prefix: Optional[str] = None) -> int:
        """Drop every key starting with prefix, or everything when prefix is None."""
        if prefix is None:
            count = len(self._entries)
            self._entries.clear()
            return count

        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def sweep(self) -> int:
        now = self.clock()
        expired = [key for key, (expiresAt, _) in self._entries.items() if now >= expiresAt]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self):
        return len(self._entries)
