"""
Tests for the in-process event bus.
"""

import pytest

from mlm_system.events.event_bus import eventBus, MLMEvents


class TestEventBus:
    """Test delivery and handler isolation."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        received = []

        async def asyncHandler(data):
            received.append(("async", data["memberId"]))

        eventBus.subscribe(MLMEvents.MEMBER_PLACED, lambda data: received.append(("sync", data["memberId"])))
        eventBus.subscribe(MLMEvents.MEMBER_PLACED, asyncHandler)

        delivered = await eventBus.emit(MLMEvents.MEMBER_PLACED, {"memberId": 7})

        assert delivered == 2
        assert received == [("sync", 7), ("async", 7)]

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self):
        received = []

        def broken(data):
            raise RuntimeError("boom")

        eventBus.subscribe(MLMEvents.PERIOD_SETTLED, broken)
        eventBus.subscribe(MLMEvents.PERIOD_SETTLED, received.append)

        delivered = await eventBus.emit(MLMEvents.PERIOD_SETTLED, {"year": 2024})

        assert delivered == 1
        assert received == [{"year": 2024}]

    @pytest.mark.asyncio
    async def test_duplicate_subscribe_and_unsubscribe(self):
        received = []
        eventBus.subscribe(MLMEvents.PLAN_UPDATED, received.append)
        eventBus.subscribe(MLMEvents.PLAN_UPDATED, received.append)

        assert eventBus.handlerCount(MLMEvents.PLAN_UPDATED) == 1

        eventBus.unsubscribe(MLMEvents.PLAN_UPDATED, received.append)
        eventBus.unsubscribe(MLMEvents.PLAN_UPDATED, received.append)

        assert await eventBus.emit(MLMEvents.PLAN_UPDATED, {}) == 0
        assert received == []
