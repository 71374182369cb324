# mlm_system/events/event_bus.py
"""
In-process notifications for hierarchy, purchase, settlement and plan changes.
"""
from typing import Any, Callable, Dict, List
import asyncio
import logging

logger = logging.getLogger(__name__)


def _handlerName(handler: Callable) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """
    Process-wide publish/subscribe registry.

    Handlers may be plain callables or coroutine functions. A failing handler is
    logged and skipped; the emitter and the remaining handlers are unaffected.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._handlers = {}
        return cls._instance

    def subscribe(self, eventName: str, handler: Callable):
        handlers: List[Callable] = self._handlers.setdefault(eventName, [])
        if handler in handlers:
            logger.debug(f"{_handlerName(handler)} already subscribed to {eventName}")
            return

        handlers.append(handler)
        logger.debug(f"{_handlerName(handler)} subscribed to {eventName}")

    def unsubscribe(self, eventName: str, handler: Callable):
        handlers = self._handlers.get(eventName, [])
        if handler not in handlers:
            return

        handlers.remove(handler)
        if not handlers:
            del self._handlers[eventName]
        logger.debug(f"{_handlerName(handler)} unsubscribed from {eventName}")

    def handlerCount(self, eventName: str) -> int:
        return len(self._handlers.get(eventName, []))

    async def emit(self, eventName: str, data: Dict[str, Any]) -> int:
        """Deliver data to every handler of eventName. Returns how many handlers succeeded."""
        # Snapshot: handlers may unsubscribe while being called
        handlers = list(self._handlers.get(eventName, []))
        if not handlers:
            return 0

        logger.debug(f"Emitting {eventName} to {len(handlers)} handler(s): {data}")

        delivered = 0
        for handler in handlers:
            try:
                result = handler(data)
                if asyncio.iscoroutine(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(f"Handler {_handlerName(handler)} failed on {eventName}: {e}", exc_info=True)

        return delivered

    def clear(self):
        self._handlers.clear()


eventBus = EventBus()


class MLMEvents:
    """Event names emitted by the compensation core."""

    # Purchases
    PURCHASE_COMPLETED = "purchase.completed"

    # Hierarchy edits
    MEMBER_PLACED = "member.placed"
    MEMBER_UPLINE_CHANGED = "member.upline_changed"
    MEMBER_DEACTIVATED = "member.deactivated"
    MEMBER_RANK_CHANGED = "member.rank_changed"

    # Settlement
    MEMBER_SETTLED = "settlement.member_settled"
    MEMBER_SETTLEMENT_FAILED = "settlement.member_failed"
    PERIOD_SETTLED = "settlement.period_settled"

    # Plan configuration
    PLAN_UPDATED = "plan.updated"
