# mlm_system/utils/time_machine.py
"""
System clock with an optional virtual override, plus calendar period helpers.

Every "now" in the compensation core goes through timeMachine so settlement
runs and cutoff checks can be replayed at a chosen moment.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple
import calendar
import logging

from mlm_system.errors import InvalidArgument

logger = logging.getLogger(__name__)


def naiveUtc(value: datetime) -> datetime:
    """Aware datetimes are converted to UTC and stripped; naive ones are taken as UTC already."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _lastDay(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def periodWindow(year: int, month: int) -> Tuple[datetime, datetime]:
    """Inclusive [start, end] window covering the calendar month."""
    if not 1 <= month <= 12:
        raise InvalidArgument(f"Invalid month: {month}")

    start = datetime(year, month, 1)
    end = datetime(year, month, _lastDay(year, month), 23, 59, 59, 999999)
    return start, end


class TimeMachine:
    """Singleton clock. Real UTC time unless a virtual moment has been set; always naive UTC."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._virtualTime = None
        return cls._instance

    @property
    def isVirtual(self) -> bool:
        return self._virtualTime is not None

    @property
    def now(self) -> datetime:
        if self._virtualTime is not None:
            return self._virtualTime
        return naiveUtc(datetime.now(timezone.utc))

    @property
    def currentPeriod(self) -> Tuple[int, int]:
        now = self.now
        return now.year, now.month

    def cutoffDate(self, cutoffDay: int) -> int:
        """Day of the current month that closes it; cutoffDay is clamped to the month length."""
        now = self.now
        return min(cutoffDay, _lastDay(now.year, now.month))

    def isCutoffDay(self, cutoffDay: int) -> bool:
        return self.now.day == self.cutoffDate(cutoffDay)

    def setTime(self, newTime: datetime, adminId: Optional[int] = None):
        self._virtualTime = naiveUtc(newTime)
        logger.info(f"Virtual time set to {newTime} (admin {adminId})")

    def advanceTime(self, days: int = 0, hours: int = 0):
        if self._virtualTime is None:
            raise ValueError("Cannot advance time when not in test mode")

        self._virtualTime += timedelta(days=days, hours=hours)
        logger.info(f"Virtual time advanced to {self._virtualTime}")

    def resetToRealTime(self):
        if self._virtualTime is not None:
            logger.info("Virtual time cleared, back to real time")
        self._virtualTime = None


timeMachine = TimeMachine()
