# mlm_system/services/volume_service.py
"""
PV aggregation service for the compensation engine.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from models import Member, Purchase
from mlm_system.config.ranks import Structure, PurchaseStatus
from mlm_system.errors import InvalidRange, CorruptHierarchy
from mlm_system.services.hierarchy_service import HierarchyService, BINARY
from mlm_system.services.plan_service import PlanService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class DownlineVolume:
    structure: str
    leftLegPV: Decimal = ZERO
    rightLegPV: Decimal = ZERO
    totalPV: Decimal = ZERO
    levels: Dict[int, Decimal] = field(default_factory=dict)

    @property
    def weakerLegPV(self) -> Decimal:
        return min(self.leftLegPV, self.rightLegPV)


class VolumeCache:
    """
    Memo shared by every member unit of one settlement run.
    Personal PV is loaded once per window; subtree ids and subtree PV are kept per root.
    """

    def __init__(self):
        self.personal: Dict[Tuple[datetime, datetime], Dict[int, Decimal]] = {}
        self.subtrees: Dict[int, List[int]] = {}
        self.subtreePV: Dict[Tuple[int, datetime, datetime], Decimal] = {}


def checkRange(start: datetime, end: datetime):
    if end < start:
        raise InvalidRange(f"Window end {end} is before start {start}")


def completedPurchases(query, start: datetime, end: datetime):
    """Restrict a Purchase query to member-owned completed purchases inside [start, end]."""
    return query.filter(
        Purchase.status == PurchaseStatus.COMPLETED,
        Purchase.memberID.isnot(None),
        Purchase.createdAt >= start,
        Purchase.createdAt <= end,
    )


class VolumeService:
    """Service for personal and downline point volume."""

    def __init__(self, session: Session, cache: Optional[VolumeCache] = None):
        self.session = session
        self.cache = cache
        self.hierarchy = HierarchyService(session)

    def _loadPersonalPV(self, start: datetime, end: datetime, memberIds: Iterable[int] = None) -> Dict[int, Decimal]:
        query = completedPurchases(
            self.session.query(Purchase.memberID, func.sum(Purchase.totalPV)),
            start, end
        )
        if memberIds is not None:
            query = query.filter(Purchase.memberID.in_(list(memberIds)))

        return {
            memberId: Decimal(str(total or 0))
            for memberId, total in query.group_by(Purchase.memberID).all()
        }

    def _pvMap(self, memberIds: List[int], start: datetime, end: datetime) -> Dict[int, Decimal]:
        if self.cache is None:
            return self._loadPersonalPV(start, end, memberIds)

        window = (start, end)
        if window not in self.cache.personal:
            self.cache.personal[window] = self._loadPersonalPV(start, end)
            logger.debug(f"Loaded personal PV for {len(self.cache.personal[window])} members in {window}")
        return self.cache.personal[window]

    async def personalPV(self, memberId: int, start: datetime, end: datetime) -> Decimal:
        """Sum of the member's own completed purchase PV in [start, end]. Zero when none."""
        checkRange(start, end)
        return self._pvMap([memberId], start, end).get(memberId, ZERO)

    async def _subtree(self, rootId: int) -> List[int]:
        if self.cache is not None and rootId in self.cache.subtrees:
            return self.cache.subtrees[rootId]

        ids = await self.hierarchy.getBinarySubtree(rootId)
        if self.cache is not None:
            self.cache.subtrees[rootId] = ids
        return ids

    async def subtreePV(self, rootId: int, start: datetime, end: datetime) -> Decimal:
        """Personal PV of rootId plus every member below it in the binary tree."""
        key = (rootId, start, end)
        if self.cache is not None and key in self.cache.subtreePV:
            return self.cache.subtreePV[key]

        ids = await self._subtree(rootId)
        pvByMember = self._pvMap(ids, start, end)
        total = sum((pvByMember.get(memberId, ZERO) for memberId in ids), ZERO)

        if self.cache is not None:
            self.cache.subtreePV[key] = total
        return total

    async def downlinePV(
            self,
            memberId: int,
            start: datetime,
            end: datetime,
            structure: Optional[str] = None,
            maxLevel: Optional[int] = None
    ) -> DownlineVolume:
        """
        Binary: whole subtree PV under each leg.
        Unilevel: PV bucketed by upline distance, up to maxLevel.
        The structure is read from the plan settings on each call unless given.
        """
        checkRange(start, end)
        member = await self.hierarchy.getMember(memberId)

        planService = PlanService(self.session)
        if structure is None:
            structure = await planService.getStructure()

        if structure == Structure.BINARY.value:
            return await self._binaryVolume(member, start, end)

        if maxLevel is None:
            maxLevel = int(await planService.getSetting("unilevel_max_depth"))
        return await self._unilevelVolume(member, start, end, maxLevel)

    async def _binaryVolume(self, member: Member, start: datetime, end: datetime) -> DownlineVolume:
        result = DownlineVolume(structure=Structure.BINARY.value)
        seen = set()

        for leg, rootId in (("left", member.leftLegID), ("right", member.rightLegID)):
            if rootId is None:
                continue

            ids = await self._subtree(rootId)
            if member.memberID in ids:
                logger.error(f"Member {member.memberID} appears inside its own {leg} leg")
                raise CorruptHierarchy(member.memberID, BINARY)
            shared = seen.intersection(ids)
            if shared:
                logger.error(f"Members {sorted(shared)} appear in both legs of {member.memberID}")
                raise CorruptHierarchy(min(shared), BINARY)
            seen.update(ids)

            pv = await self.subtreePV(rootId, start, end)
            if leg == "left":
                result.leftLegPV = pv
            else:
                result.rightLegPV = pv

        result.totalPV = result.leftLegPV + result.rightLegPV
        return result

    async def _unilevelVolume(self, member: Member, start: datetime, end: datetime, maxLevel: int) -> DownlineVolume:
        result = DownlineVolume(structure=Structure.UNILEVEL.value)
        levels = await self.hierarchy.getDownlineLevels(member.memberID, maxLevel)

        allIds = [memberId for ids in levels.values() for memberId in ids]
        pvByMember = self._pvMap(allIds, start, end) if allIds else {}

        for level, ids in levels.items():
            result.levels[level] = sum((pvByMember.get(memberId, ZERO) for memberId in ids), ZERO)

        result.totalPV = sum(result.levels.values(), ZERO)
        return result

    async def groupSales(self, memberId: int, start: datetime, end: datetime, maxLevel: int) -> Tuple[Decimal, Decimal]:
        """Monetary (personal, team) sales in [start, end]; team walks the upline relation."""
        checkRange(start, end)
        levels = await self.hierarchy.getDownlineLevels(memberId, maxLevel)
        teamIds = [downlineId for ids in levels.values() for downlineId in ids]

        personal = completedPurchases(
            self.session.query(func.sum(Purchase.totalAmount)), start, end
        ).filter(Purchase.memberID == memberId).scalar()

        team = None
        if teamIds:
            team = completedPurchases(
                self.session.query(func.sum(Purchase.totalAmount)), start, end
            ).filter(Purchase.memberID.in_(teamIds)).scalar()

        return Decimal(str(personal or 0)), Decimal(str(team or 0))
