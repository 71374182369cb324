# mlm_system/services/hierarchy_service.py
"""
Hierarchy store access: member lookup, traversals and placement.

The upline chain (uplineID) and the binary tree (leftLegID/rightLegID) are two
independent edge sets over the same members. Each has its own traversal, and
every traversal keeps a visited set and raises CorruptHierarchy on a revisit.
"""
from collections import deque
from typing import Dict, List, Optional, Tuple
from sqlalchemy import or_
from sqlalchemy.orm import Session
import logging

from models import Member
from mlm_system.errors import MemberNotFound, CorruptHierarchy, InvalidArgument
from mlm_system.events.event_bus import eventBus, MLMEvents

logger = logging.getLogger(__name__)

UPLINE = "upline"
BINARY = "binary"
LEFT = "left"
RIGHT = "right"


def walkDownline(session: Session, memberId: int, maxLevel: Optional[int] = None) -> Dict[int, List[int]]:
    """
    Breadth-first walk of the upline relation in reverse.
    Returns {level: [memberID, ...]} for levels 1..maxLevel (unbounded when None).
    """
    levels: Dict[int, List[int]] = {}
    visited = {memberId}
    frontier = [memberId]
    level = 1

    while frontier and (maxLevel is None or level <= maxLevel):
        rows = session.query(Member.memberID, Member.uplineID).filter(
            Member.uplineID.in_(frontier)
        ).order_by(Member.memberID).all()

        children: Dict[int, List[int]] = {}
        for childId, parentId in rows:
            children.setdefault(parentId, []).append(childId)

        nextFrontier = []
        for parentId in frontier:
            for childId in children.get(parentId, []):
                if childId in visited:
                    logger.error(f"Upline cycle detected at member {childId} (below {memberId})")
                    raise CorruptHierarchy(childId, UPLINE)
                visited.add(childId)
                nextFrontier.append(childId)

        if nextFrontier:
            levels[level] = nextFrontier
        frontier = nextFrontier
        level += 1

    return levels


class HierarchyService:
    """Service for reading and editing the member hierarchy."""

    def __init__(self, session: Session, bus=None):
        self.session = session
        self.bus = bus or eventBus

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def getMember(self, memberId: int) -> Member:
        member = self.session.query(Member).filter_by(memberID=memberId).first()
        if not member:
            raise MemberNotFound(memberId)
        return member

    async def getDirectDownline(self, memberId: int) -> List[Member]:
        """Members whose upline is memberId, newest first."""
        return self.session.query(Member).filter(
            Member.uplineID == memberId
        ).order_by(Member.createdAt.desc(), Member.memberID.desc()).all()

    def _binaryChildren(self, memberIds: List[int]) -> Dict[int, Tuple[Optional[int], Optional[int]]]:
        rows = self.session.query(
            Member.memberID, Member.leftLegID, Member.rightLegID
        ).filter(Member.memberID.in_(memberIds)).all()
        return {row[0]: (row[1], row[2]) for row in rows}

    # ------------------------------------------------------------------
    # Upline relation
    # ------------------------------------------------------------------

    async def getUplineChain(self, memberId: int, maxLevels: Optional[int] = None) -> List[Tuple[Member, int]]:
        """Walk uplineID from memberId. Returns [(ancestor, level)], level 1 = direct upline."""
        member = await self.getMember(memberId)
        chain = []
        visited = {member.memberID}
        level = 0

        currentId = member.uplineID
        while currentId is not None:
            if maxLevels is not None and level >= maxLevels:
                break

            if currentId in visited:
                logger.error(f"Upline cycle detected at member {currentId} (walking from {memberId})")
                raise CorruptHierarchy(currentId, UPLINE)
            visited.add(currentId)

            upline = self.session.query(Member).filter_by(memberID=currentId).first()
            if not upline:
                break

            level += 1
            chain.append((upline, level))
            currentId = upline.uplineID

        return chain

    async def getDownlineLevels(self, memberId: int, maxLevel: Optional[int] = None) -> Dict[int, List[int]]:
        """{level: [memberID, ...]} below memberId over the upline relation."""
        return walkDownline(self.session, memberId, maxLevel)

    # ------------------------------------------------------------------
    # Binary relation
    # ------------------------------------------------------------------

    async def getLegRoots(self, memberId: int) -> Tuple[Optional[int], Optional[int]]:
        member = await self.getMember(memberId)
        return member.leftLegID, member.rightLegID

    async def getBinarySubtree(self, rootId: int, maxDepth: Optional[int] = None, exclude=None) -> List[int]:
        """
        Ids of rootId and everything below it through left/right slots.
        exclude holds ids already seen by the caller; reaching one is a cycle.
        """
        visited = set(exclude or ())
        if rootId in visited:
            logger.error(f"Binary cycle detected at member {rootId}")
            raise CorruptHierarchy(rootId, BINARY)

        visited.add(rootId)
        order = [rootId]
        frontier = [rootId]
        depth = 0

        while frontier:
            if maxDepth is not None and depth >= maxDepth:
                break

            children = self._binaryChildren(frontier)
            nextFrontier = []
            for parentId in frontier:
                for childId in children.get(parentId, (None, None)):
                    if childId is None:
                        continue
                    if childId in visited:
                        logger.error(f"Binary cycle detected at member {childId} (below {rootId})")
                        raise CorruptHierarchy(childId, BINARY)
                    visited.add(childId)
                    order.append(childId)
                    nextFrontier.append(childId)

            frontier = nextFrontier
            depth += 1

        return order

    async def getPlacementOptions(self, parentId: int) -> Dict[str, bool]:
        parent = await self.getMember(parentId)
        return {
            LEFT: parent.leftLegID is None,
            RIGHT: parent.rightLegID is None,
        }

    async def findNextAvailablePlacement(self, startId: int, preferredLeg: str = LEFT) -> Tuple[int, str]:
        """Breadth-first search for the first free slot under startId, preferred leg first."""
        if preferredLeg not in (LEFT, RIGHT):
            raise InvalidArgument(f"Unknown leg: {preferredLeg}")

        await self.getMember(startId)
        queue = deque([startId])
        visited = {startId}

        while queue:
            currentId = queue.popleft()
            left, right = self._binaryChildren([currentId]).get(currentId, (None, None))
            slots = {LEFT: left, RIGHT: right}
            order = [preferredLeg, RIGHT if preferredLeg == LEFT else LEFT]

            for leg in order:
                if slots[leg] is None:
                    return currentId, leg

            for leg in order:
                childId = slots[leg]
                if childId in visited:
                    logger.error(f"Binary cycle detected at member {childId} during placement search")
                    raise CorruptHierarchy(childId, BINARY)
                visited.add(childId)
                queue.append(childId)

        raise CorruptHierarchy(startId, BINARY)

    async def placeMember(self, memberId: int, parentId: int, position: str) -> Member:
        """Put memberId into parentId's free left/right slot."""
        if position not in (LEFT, RIGHT):
            raise InvalidArgument(f"Unknown position: {position}")
        if memberId == parentId:
            raise InvalidArgument("A member cannot be placed under itself")

        member = await self.getMember(memberId)
        parent = await self.getMember(parentId)

        slot = parent.leftLegID if position == LEFT else parent.rightLegID
        if slot is not None:
            raise InvalidArgument(f"The {position} position under member {parentId} is already filled")

        # parent must not already sit inside member's binary subtree
        subtree = await self.getBinarySubtree(memberId)
        if parentId in subtree:
            raise CorruptHierarchy(parentId, BINARY)

        currentParent = self.session.query(Member.memberID).filter(
            or_(Member.leftLegID == memberId, Member.rightLegID == memberId)
        ).first()
        if currentParent is not None:
            raise InvalidArgument(f"Member {memberId} is already placed under member {currentParent[0]}")

        if position == LEFT:
            parent.leftLegID = memberId
        else:
            parent.rightLegID = memberId
        member.placementPosition = position

        self.session.commit()
        logger.info(f"Placed member {memberId} on the {position} of member {parentId}")

        await self.bus.emit(MLMEvents.MEMBER_PLACED, {
            "memberId": memberId,
            "parentId": parentId,
            "position": position,
        })
        return member

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def setUpline(self, memberId: int, uplineId: Optional[int]) -> Member:
        """Move memberId under uplineId, refusing any move that closes a cycle."""
        member = await self.getMember(memberId)

        if uplineId is not None:
            if uplineId == memberId:
                raise InvalidArgument("A member cannot be its own upline")
            await self.getMember(uplineId)
            chain = await self.getUplineChain(uplineId)
            if any(ancestor.memberID == memberId for ancestor, _ in chain):
                raise CorruptHierarchy(memberId, UPLINE)

        previous = member.uplineID
        member.uplineID = uplineId
        self.session.commit()
        logger.info(f"Member {memberId} upline changed {previous} -> {uplineId}")

        await self.bus.emit(MLMEvents.MEMBER_UPLINE_CHANGED, {
            "memberId": memberId,
            "previousUplineId": previous,
            "uplineId": uplineId,
        })
        return member

    async def deactivateMember(self, memberId: int) -> Member:
        """Soft delete: members are never removed, only flagged inactive."""
        member = await self.getMember(memberId)
        member.isActive = False
        self.session.commit()
        logger.info(f"Member {memberId} deactivated")

        await self.bus.emit(MLMEvents.MEMBER_DEACTIVATED, {"memberId": memberId})
        return member

    async def checkIntegrity(self) -> Dict[str, List[int]]:
        """Report members whose upline chain or binary subtree loops back on itself."""
        uplineCycles = []
        binaryCycles = []

        for (memberId,) in self.session.query(Member.memberID).order_by(Member.memberID).all():
            try:
                await self.getUplineChain(memberId)
            except CorruptHierarchy:
                uplineCycles.append(memberId)
            try:
                await self.getBinarySubtree(memberId)
            except CorruptHierarchy:
                binaryCycles.append(memberId)

        if uplineCycles or binaryCycles:
            logger.error(f"Hierarchy integrity check failed: upline={uplineCycles}, binary={binaryCycles}")

        return {UPLINE: uplineCycles, BINARY: binaryCycles}
