"""
Tests for purchase recording.

Tests cover:
- PV by percentage and by fixed product PV
- Input validation
- Guest purchases
- Completion event
"""

from datetime import datetime
from decimal import Decimal

import pytest

from mlm_system.config.ranks import PurchaseStatus
from mlm_system.errors import InvalidArgument, MemberNotFound, ProductNotFound
from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.services.purchase_service import PurchaseService
from mlm_system.services.volume_service import VolumeService
from mlm_system.utils.time_machine import periodWindow, timeMachine


@pytest.fixture
def shop(seed):
    seed.member(1)
    seed.product(1, price="80", pv="30")
    return seed


class TestRecordPurchase:
    """Test recordCompletedPurchase."""

    @pytest.mark.asyncio
    async def test_percentage_pv(self, session, shop):
        purchase = await PurchaseService(session).recordCompletedPurchase(1, 1, 2, "80", datetime(2024, 3, 5))

        assert purchase.status == PurchaseStatus.COMPLETED
        assert purchase.totalAmount == Decimal("160")
        # default pv_percentage is 50
        assert purchase.totalPV == Decimal("80.00")

    @pytest.mark.asyncio
    async def test_fixed_pv(self, session, shop):
        shop.setting("pv_calculation", "fixed")

        purchase = await PurchaseService(session).recordCompletedPurchase(1, 1, 3, "80", datetime(2024, 3, 5))

        assert purchase.totalPV == Decimal("90")

    @pytest.mark.asyncio
    async def test_counts_toward_personal_pv(self, session, shop):
        await PurchaseService(session).recordCompletedPurchase(1, 1, 1, "80", datetime(2024, 3, 5))

        assert await VolumeService(session).personalPV(1, *periodWindow(2024, 3)) == Decimal("40")

    @pytest.mark.asyncio
    async def test_timestamp_defaults_to_system_time(self, session, shop):
        timeMachine.setTime(datetime(2024, 5, 17, 9, 30))

        purchase = await PurchaseService(session).recordCompletedPurchase(1, 1, 1, "80")

        assert purchase.createdAt == datetime(2024, 5, 17, 9, 30)

    @pytest.mark.asyncio
    async def test_guest_purchase(self, session, shop):
        purchase = await PurchaseService(session).recordCompletedPurchase(None, 1, 1, "80", datetime(2024, 3, 5))

        assert purchase.memberID is None
        assert await VolumeService(session).personalPV(1, *periodWindow(2024, 3)) == Decimal("0")

    @pytest.mark.asyncio
    async def test_event_emitted(self, session, shop):
        received = []
        eventBus.subscribe(MLMEvents.PURCHASE_COMPLETED, lambda data: received.append(data))

        purchase = await PurchaseService(session).recordCompletedPurchase(1, 1, 1, "80", datetime(2024, 3, 5))

        assert received == [{
            "purchaseId": purchase.purchaseID,
            "memberId": 1,
            "productId": 1,
            "totalPV": "40.00",
        }]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity, amount", [(0, "80"), (-1, "80"), (1, "-5"), (1, "abc")])
    async def test_invalid_input(self, session, shop, quantity, amount):
        with pytest.raises(InvalidArgument):
            await PurchaseService(session).recordCompletedPurchase(1, 1, quantity, amount)

    @pytest.mark.asyncio
    async def test_unknown_product(self, session, shop):
        with pytest.raises(ProductNotFound):
            await PurchaseService(session).recordCompletedPurchase(1, 99, 1, "80")

    @pytest.mark.asyncio
    async def test_unknown_member(self, session, shop):
        with pytest.raises(MemberNotFound):
            await PurchaseService(session).recordCompletedPurchase(99, 1, 1, "80")
