# mlm_system/services/commission_service.py
"""
Commission calculation service.

calculate() only reads. The settlement processor persists its line items;
reporting code can call it for previews.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
import logging

import config
from models import Member, Purchase
from mlm_system.config.ranks import CommissionType, RewardType
from mlm_system.services.hierarchy_service import HierarchyService
from mlm_system.services.plan_service import PlanService, CompensationPlan
from mlm_system.services.volume_service import (
    VolumeService, VolumeCache, DownlineVolume, checkRange, completedPurchases
)
from mlm_system.utils.time_machine import periodWindow

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(config.MONEY_QUANT, rounding=ROUND_HALF_UP)


def share(pv: Decimal, percentage: Decimal) -> Decimal:
    """Percentage share of a purchase PV, truncated to cents. The lines of one purchase never exceed its configured percentages."""
    return (Decimal(pv) * percentage / HUNDRED).quantize(config.MONEY_QUANT, rounding=ROUND_DOWN)


@dataclass
class CommissionLine:
    """One future Rebate row."""
    rebateType: str
    amount: Decimal
    level: Optional[int] = None
    percentage: Optional[Decimal] = None
    pvAmount: Optional[Decimal] = None
    purchaseID: Optional[int] = None
    generatorID: Optional[int] = None


@dataclass
class CommissionBreakdown:
    memberId: int
    directReferralBonus: Decimal = ZERO
    levelCommissions: Decimal = ZERO
    groupVolumeBonus: Decimal = ZERO
    performanceBonus: Decimal = ZERO
    totalCommission: Decimal = ZERO
    personalPV: Decimal = ZERO
    volume: Optional[DownlineVolume] = None
    lines: List[CommissionLine] = field(default_factory=list)

    def toDict(self) -> Dict:
        volume = self.volume
        return {
            "memberId": self.memberId,
            "personalPV": str(self.personalPV),
            "leftLegPV": str(volume.leftLegPV) if volume else "0",
            "rightLegPV": str(volume.rightLegPV) if volume else "0",
            "totalGroupPV": str(volume.totalPV) if volume else "0",
            "directReferralBonus": str(self.directReferralBonus),
            "levelCommissions": str(self.levelCommissions),
            "groupVolumeBonus": str(self.groupVolumeBonus),
            "performanceBonus": str(self.performanceBonus),
            "totalCommission": str(self.totalCommission),
        }


class CommissionService:
    """Service for calculating MLM commissions."""

    def __init__(self, session: Session, volumeCache: Optional[VolumeCache] = None):
        self.session = session
        self.hierarchy = HierarchyService(session)
        self.volume = VolumeService(session, volumeCache)

    async def calculate(
            self,
            memberId: int,
            start: datetime,
            end: datetime,
            plan: Optional[CompensationPlan] = None
    ) -> CommissionBreakdown:
        """Compute every commission component for memberId over [start, end]."""
        checkRange(start, end)
        member = await self.hierarchy.getMember(memberId)

        if plan is None:
            plan = await PlanService(self.session).loadPlan()

        breakdown = CommissionBreakdown(memberId=memberId)
        breakdown.personalPV = await self.volume.personalPV(memberId, start, end)

        # 1. Direct referral bonus
        await self._directReferral(member, start, end, plan, breakdown)

        # 2. Level commissions
        await self._levelCommissions(member, start, end, plan, breakdown)

        # 3. Group volume bonus (binary only)
        breakdown.volume = await self.volume.downlinePV(
            memberId, start, end,
            structure=plan.structure,
            maxLevel=plan.unilevelMaxDepth
        )
        if plan.isBinary:
            self._groupVolume(breakdown.volume, plan, breakdown)

        # 4. Performance bonus
        if plan.performanceBonusEnabled:
            await self._performanceBonus(member, start, end, plan, breakdown)

        breakdown.directReferralBonus = money(breakdown.directReferralBonus)
        breakdown.levelCommissions = money(breakdown.levelCommissions)
        breakdown.groupVolumeBonus = money(breakdown.groupVolumeBonus)
        breakdown.performanceBonus = money(breakdown.performanceBonus)
        breakdown.totalCommission = (
            breakdown.directReferralBonus
            + breakdown.levelCommissions
            + breakdown.groupVolumeBonus
            + breakdown.performanceBonus
        )

        logger.debug(
            f"Commission for member {memberId} {start:%Y-%m-%d}..{end:%Y-%m-%d}: "
            f"referral={breakdown.directReferralBonus}, level={breakdown.levelCommissions}, "
            f"group={breakdown.groupVolumeBonus}, performance={breakdown.performanceBonus}"
        )
        return breakdown

    async def _directReferral(self, member: Member, start, end, plan: CompensationPlan, breakdown: CommissionBreakdown):
        rate = plan.rate(CommissionType.DIRECT_REFERRAL.value)
        if not rate or not rate.fixedAmount:
            return

        referrals = self.session.query(Member.memberID).filter(
            Member.uplineID == member.memberID,
            Member.createdAt >= start,
            Member.createdAt <= end,
        ).order_by(Member.memberID).all()

        for (referralId,) in referrals:
            if referralId == member.memberID:
                continue
            amount = money(rate.fixedAmount)
            breakdown.directReferralBonus += amount
            breakdown.lines.append(CommissionLine(
                rebateType=CommissionType.DIRECT_REFERRAL.value,
                amount=amount,
                level=1,
                generatorID=referralId,
            ))

    async def _levelCommissions(self, member: Member, start, end, plan: CompensationPlan, breakdown: CommissionBreakdown):
        maxLevel = plan.maxLevel
        if maxLevel < 1:
            return

        levels = await self.hierarchy.getDownlineLevels(member.memberID, maxLevel)
        for level in sorted(levels):
            purchases = completedPurchases(self.session.query(Purchase), start, end).filter(
                Purchase.memberID.in_(levels[level])
            ).order_by(Purchase.purchaseID).all()

            for purchase in purchases:
                if purchase.memberID == member.memberID:
                    continue

                percentage = plan.levelPercentages(purchase.productID).get(level)
                if not percentage:
                    continue

                pv = Decimal(str(purchase.totalPV or 0))
                amount = share(pv, percentage)
                if amount <= ZERO:
                    continue

                breakdown.levelCommissions += amount
                breakdown.lines.append(CommissionLine(
                    rebateType=CommissionType.LEVEL_COMMISSION.value,
                    amount=amount,
                    level=level,
                    percentage=percentage,
                    pvAmount=pv,
                    purchaseID=purchase.purchaseID,
                    generatorID=purchase.memberID,
                ))

    def _groupVolume(self, volume: DownlineVolume, plan: CompensationPlan, breakdown: CommissionBreakdown):
        rate = plan.rate(CommissionType.GROUP_VOLUME.value)
        if not rate:
            return

        weaker = volume.weakerLegPV
        if weaker <= ZERO:
            return

        if rate.rewardType == RewardType.FIXED.value:
            if rate.tierSize <= ZERO:
                return
            tiers = (weaker / rate.tierSize).to_integral_value(rounding=ROUND_DOWN)
            amount = money(tiers * rate.fixedAmount)
            percentage = None
        else:
            percentage = rate.percentage
            amount = money(weaker * percentage / HUNDRED)

        if amount <= ZERO:
            return

        breakdown.groupVolumeBonus += amount
        breakdown.lines.append(CommissionLine(
            rebateType=CommissionType.GROUP_VOLUME.value,
            amount=amount,
            percentage=percentage,
            pvAmount=weaker,
        ))

    async def _performanceBonus(self, member: Member, start, end, plan: CompensationPlan, breakdown: CommissionBreakdown):
        personal, team = await self.volume.groupSales(member.memberID, start, end, plan.unilevelMaxDepth)
        sales = personal + team

        tier = plan.tierFor(sales)
        if not tier:
            return

        if tier.bonusType == RewardType.FIXED.value:
            amount = money(tier.fixedAmount)
            percentage = None
        else:
            percentage = tier.percentage
            amount = money(sales * percentage / HUNDRED)

        if amount <= ZERO:
            return

        breakdown.performanceBonus += amount
        breakdown.lines.append(CommissionLine(
            rebateType=CommissionType.PERFORMANCE_BONUS.value,
            amount=amount,
            percentage=percentage,
        ))
        logger.debug(f"Member {member.memberID} reached performance tier {tier.name} with sales {sales}")

    async def simulateEarnings(self, memberId: int, year: int, month: int) -> Dict:
        """Read-only preview of what settling (year, month) would pay memberId."""
        start, end = periodWindow(year, month)
        breakdown = await self.calculate(memberId, start, end)
        result = breakdown.toDict()
        result.update({"year": year, "month": month})
        return result
