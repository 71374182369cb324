# mlm_system/utils/rate_limiter.py
"""
Fixed-window rate limiter keyed by caller identity.

Advisory backpressure only: any internal error allows the request.
State is per instance, so each process limits independently.
"""
from typing import Callable, Dict, List
import time
import logging

from mlm_system.errors import RateLimitExceeded
from mlm_system.utils.sweeper import PeriodicSweeper

logger = logging.getLogger(__name__)


class RateLimiter(PeriodicSweeper):
    """In-memory fixed-window counter with an optional background sweep."""

    def __init__(
            self,
            maxRequests: int,
            windowSeconds: float,
            cleanupInterval: float = 3600,
            clock: Callable[[], float] = time.monotonic
    ):
        super().__init__(cleanupInterval)
        self.maxRequests = maxRequests
        self.windowSeconds = windowSeconds
        self.clock = clock
        # key -> [windowStart, count]
        self._windows: Dict[str, List] = {}

    def hit(self, key) -> bool:
        """Count one request for key. Returns False when over the limit."""
        try:
            now = self.clock()
            window = self._windows.get(key)

            if window is None or now - window[0] >= self.windowSeconds:
                self._windows[key] = [now, 1]
                return True

            if window[1] >= self.maxRequests:
                logger.warning(
                    f"Rate limit: {key} exceeded {self.maxRequests} requests "
                    f"per {self.windowSeconds}s"
                )
                return False

            window[1] += 1
            return True
        except Exception as e:
            logger.error(f"Rate limiter failure for {key}, allowing request: {e}")
            return True

    def enforce(self, key):
        """Count one request for key or raise RateLimitExceeded."""
        if not self.hit(key):
            raise RateLimitExceeded(str(key), self.retryAfter(key))

    def retryAfter(self, key) -> float:
        try:
            window = self._windows.get(key)
            if window is None:
                return 0.0
            return max(0.0, self.windowSeconds - (self.clock() - window[0]))
        except Exception as e:
            logger.error(f"Rate limiter failure computing retry for {key}: {e}")
            return 0.0

    def remaining(self, key) -> int:
        window = self._windows.get(key)
        if window is None or self.clock() - window[0] >= self.windowSeconds:
            return self.maxRequests
        return max(0, self.maxRequests - window[1])

    def reset(self, key=None):
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)

    def sweep(self) -> int:
        """Drop expired windows."""
        now = self.clock()
        expired = [
            key for key, window in self._windows.items()
            if now - window[0] >= self.windowSeconds
        ]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def __len__(self):
        return len(self._windows)
