# mlm_system/services/purchase_service.py
"""
Inbound purchase recording for the compensation engine.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
from sqlalchemy.orm import Session
import logging

from models import Member, Product, Purchase
from mlm_system.config.ranks import PvCalculation, PurchaseStatus
from mlm_system.errors import InvalidArgument, MemberNotFound, ProductNotFound
from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.services.plan_service import PlanService
from mlm_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class PurchaseService:
    """Records completed purchases handed over by checkout."""

    def __init__(self, session: Session, bus=None):
        self.session = session
        self.bus = bus or eventBus

    async def calculatePV(self, product: Product, quantity: int, unitAmount: Decimal) -> Decimal:
        """PV for a purchase line according to the current pv_calculation setting."""
        planService = PlanService(self.session)
        method = await planService.getSetting("pv_calculation")

        if method == PvCalculation.FIXED.value:
            return Decimal(str(product.pv or 0)) * quantity

        percentage = Decimal(str(await planService.getSetting("pv_percentage")))
        return (unitAmount * quantity * percentage / HUNDRED).quantize(Decimal("0.01"))

    async def recordCompletedPurchase(
            self,
            memberId: Optional[int],
            productId: int,
            quantity: int,
            unitAmount,
            periodTimestamp: Optional[datetime] = None
    ) -> Purchase:
        """
        Store a completed purchase. memberId None records a guest purchase,
        which never takes part in compensation.
        """
        if not isinstance(quantity, int) or quantity < 1:
            raise InvalidArgument(f"Quantity must be a positive integer, got {quantity}")

        try:
            unitAmount = Decimal(str(unitAmount))
        except InvalidOperation:
            raise InvalidArgument(f"Invalid unit amount: {unitAmount}")
        if unitAmount < 0:
            raise InvalidArgument(f"Unit amount cannot be negative: {unitAmount}")

        product = self.session.query(Product).filter_by(productID=productId).first()
        if not product:
            raise ProductNotFound(productId)

        if memberId is not None:
            member = self.session.query(Member).filter_by(memberID=memberId).first()
            if not member:
                raise MemberNotFound(memberId)

        totalPV = await self.calculatePV(product, quantity, unitAmount)

        purchase = Purchase(
            memberID=memberId,
            productID=productId,
            quantity=quantity,
            unitAmount=unitAmount,
            totalAmount=unitAmount * quantity,
            totalPV=totalPV,
            status=PurchaseStatus.COMPLETED,
            createdAt=periodTimestamp or timeMachine.now,
        )
        self.session.add(purchase)
        self.session.commit()

        logger.info(
            f"Recorded purchase {purchase.purchaseID}: member={memberId}, product={productId}, "
            f"qty={quantity}, amount={purchase.totalAmount}, pv={totalPV}"
        )

        await self.bus.emit(MLMEvents.PURCHASE_COMPLETED, {
            "purchaseId": purchase.purchaseID,
            "memberId": memberId,
            "productId": productId,
            "totalPV": str(totalPV),
        })
        return purchase
