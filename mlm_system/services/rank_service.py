# mlm_system/services/rank_service.py
"""
Rank advancement service.

A member climbs one rank at a time. The next rank is granted when lifetime
personal sales, lifetime group sales (member plus whole upline downline), the
number of direct referrals and the number of downline members already holding
the qualifying rank all reach the values in RANK_CONFIG.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
import logging

from models import Member, RankAdvancement
from mlm_system.config.ranks import Rank, RANK_CONFIG, RankMethod
from mlm_system.errors import MLMError, InvalidArgument, Unauthorized
from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.services.hierarchy_service import HierarchyService
from mlm_system.services.volume_service import VolumeService
from mlm_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

# Sales count from the first purchase ever made
SALES_EPOCH = datetime(1970, 1, 1)


def currentRank(member: Member) -> Rank:
    try:
        return Rank(member.rank or Rank.STARTER)
    except ValueError:
        logger.warning(f"Member {member.memberID} has unknown rank {member.rank}, treating as starter")
        return Rank.STARTER


def nextRank(rank: Rank) -> Optional[Rank]:
    higher = [candidate for candidate in Rank if candidate > rank]
    return min(higher) if higher else None


@dataclass
class Requirement:
    required: object
    actual: object

    @property
    def qualified(self) -> bool:
        return self.actual >= self.required


@dataclass
class RankEligibility:
    memberId: int
    currentRank: Rank
    nextRank: Optional[Rank] = None
    requirements: Dict[str, Requirement] = field(default_factory=dict)

    @property
    def eligible(self) -> bool:
        if self.nextRank is None:
            return False
        return all(requirement.qualified for requirement in self.requirements.values())

    def toDict(self) -> Dict:
        return {
            "memberId": self.memberId,
            "eligible": self.eligible,
            "currentRank": self.currentRank.name.lower(),
            "nextRank": self.nextRank.name.lower() if self.nextRank else None,
            "requirements": {
                name: {
                    "required": str(requirement.required),
                    "actual": str(requirement.actual),
                    "qualified": requirement.qualified,
                }
                for name, requirement in self.requirements.items()
            },
        }


class RankService:
    """Service for checking and granting member ranks."""

    def __init__(self, session, bus=None):
        self.session = session
        self.bus = bus or eventBus
        self.hierarchy = HierarchyService(session, self.bus)
        self.volume = VolumeService(session)

    async def checkEligibility(self, memberId: int) -> RankEligibility:
        """Measure memberId against the requirements of the rank directly above its current one."""
        member = await self.hierarchy.getMember(memberId)
        rank = currentRank(member)
        eligibility = RankEligibility(memberId=memberId, currentRank=rank, nextRank=nextRank(rank))

        if eligibility.nextRank is None:
            return eligibility

        requirements = RANK_CONFIG[eligibility.nextRank]
        personal, team = await self.volume.groupSales(memberId, SALES_EPOCH, timeMachine.now, None)

        eligibility.requirements["personalSales"] = Requirement(requirements["personalSalesRequired"], personal)
        eligibility.requirements["groupSales"] = Requirement(requirements["groupSalesRequired"], personal + team)
        eligibility.requirements["directDownline"] = Requirement(
            requirements["directDownlineRequired"], self._countDirectDownline(memberId)
        )

        qualifiedRank = requirements["qualifiedRank"]
        if requirements["qualifiedDownlineRequired"] > 0 and qualifiedRank is not None:
            eligibility.requirements["qualifiedDownline"] = Requirement(
                requirements["qualifiedDownlineRequired"],
                await self._countQualifiedDownline(memberId, qualifiedRank)
            )

        return eligibility

    def _countDirectDownline(self, memberId: int) -> int:
        return self.session.query(func.count(Member.memberID)).filter(
            Member.uplineID == memberId
        ).scalar() or 0

    async def _countQualifiedDownline(self, memberId: int, qualifiedRank: Rank) -> int:
        levels = await self.hierarchy.getDownlineLevels(memberId)
        downlineIds = [downlineId for ids in levels.values() for downlineId in ids]
        if not downlineIds:
            return 0

        return self.session.query(func.count(Member.memberID)).filter(
            Member.memberID.in_(downlineIds),
            Member.rank >= int(qualifiedRank)
        ).scalar() or 0

    async def advanceMember(self, memberId: int) -> Optional[Rank]:
        """Grant the next rank when memberId qualifies. Returns the new rank or None."""
        eligibility = await self.checkEligibility(memberId)
        if not eligibility.eligible:
            return None

        member = await self.hierarchy.getMember(memberId)
        requirements = eligibility.requirements
        qualifiedDownline = requirements.get("qualifiedDownline")

        self._recordChange(
            member,
            eligibility.nextRank,
            RankMethod.NATURAL,
            personalSales=requirements["personalSales"].actual,
            groupSales=requirements["groupSales"].actual,
            directDownlineCount=requirements["directDownline"].actual,
            qualifiedDownlineCount=qualifiedDownline.actual if qualifiedDownline else 0,
        )
        self.session.commit()

        logger.info(
            f"Member {memberId} advanced {eligibility.currentRank.name} -> {eligibility.nextRank.name}"
        )
        await self._emitChange(memberId, eligibility.currentRank, eligibility.nextRank, RankMethod.NATURAL)
        return eligibility.nextRank

    async def assignRank(self, memberId: int, rank: int, adminId: int) -> Rank:
        """Set a rank by hand. adminId must hold the admin capability."""
        try:
            newRank = Rank(rank)
        except ValueError:
            raise InvalidArgument(f"Unknown rank: {rank}")

        admin = await self.hierarchy.getMember(adminId)
        if not admin.hasCapability("admin"):
            logger.error(f"Member {adminId} tried to assign a rank without admin capability")
            raise Unauthorized(f"Member {adminId} may not assign ranks")

        member = await self.hierarchy.getMember(memberId)
        previous = currentRank(member)
        if previous == newRank:
            return newRank

        self._recordChange(member, newRank, RankMethod.ASSIGNED, assignedBy=adminId)
        self.session.commit()

        logger.info(f"Rank {newRank.name} assigned to member {memberId} by admin {adminId}")
        await self._emitChange(memberId, previous, newRank, RankMethod.ASSIGNED)
        return newRank

    def _recordChange(self, member: Member, newRank: Rank, method: str, **snapshot):
        self.session.add(RankAdvancement(
            memberID=member.memberID,
            previousRank=int(currentRank(member)),
            newRank=int(newRank),
            method=method,
            **snapshot
        ))
        member.rank = int(newRank)

    async def _emitChange(self, memberId: int, previous: Rank, newRank: Rank, method: str):
        await self.bus.emit(MLMEvents.MEMBER_RANK_CHANGED, {
            "memberId": memberId,
            "previousRank": int(previous),
            "newRank": int(newRank),
            "method": method,
        })

    async def processAllAdvancements(self) -> Dict:
        """
        Run advanceMember for every active member in id order.
        A member that fails is rolled back and reported; the run carries on.
        """
        results = {
            "processed": 0,
            "advanced": [],
            "failed": [],
        }

        memberIds: List[int] = [
            memberId for (memberId,) in self.session.query(Member.memberID).filter(
                Member.isActive == True
            ).order_by(Member.memberID).all()
        ]

        for memberId in memberIds:
            results["processed"] += 1
            try:
                newRank = await self.advanceMember(memberId)
            except (MLMError, SQLAlchemyError) as e:
                self.session.rollback()
                logger.error(f"Rank advancement for member {memberId} failed: {e}")
                results["failed"].append({"memberId": memberId, "error": str(e)})
                continue

            if newRank is not None:
                results["advanced"].append({"memberId": memberId, "newRank": int(newRank)})

        logger.info(
            f"Rank advancement complete: processed={results['processed']}, "
            f"advanced={len(results['advanced'])}, failed={len(results['failed'])}"
        )
        return results

    async def getHistory(self, memberId: int) -> List[RankAdvancement]:
        await self.hierarchy.getMember(memberId)
        return self.session.query(RankAdvancement).filter_by(
            memberID=memberId
        ).order_by(RankAdvancement.createdAt, RankAdvancement.advancementID).all()
