# mlm_system/utils/sweeper.py
"""
Background sweep task shared by the in-memory limiter and cache.
"""
from typing import Optional
import asyncio
import logging

logger = logging.getLogger(__name__)


class PeriodicSweeper:
    """
    Owns an asyncio task that calls sweep() every sweepInterval seconds.
    Subclasses implement sweep(); callers control the lifetime via start()/stop().
    """

    def __init__(self, sweepInterval: float):
        self.sweepInterval = sweepInterval
        self._task: Optional[asyncio.Task] = None

    def sweep(self) -> int:
        raise NotImplementedError

    @property
    def isRunning(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if self.isRunning:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug(f"{type(self).__name__} sweeper started, interval {self.sweepInterval}s")

    async def stop(self):
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug(f"{type(self).__name__} sweeper stopped")

    async def _run(self):
        while True:
            await asyncio.sleep(self.sweepInterval)
            try:
                removed = self.sweep()
                if removed:
                    logger.debug(f"{type(self).__name__} swept {removed} expired entries")
            except Exception as e:
                logger.error(f"Error during {type(self).__name__} sweep: {e}", exc_info=True)
