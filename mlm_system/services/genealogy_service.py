# mlm_system/services/genealogy_service.py
"""
Hierarchy query service - read-only genealogy views over the upline relation.

Every public call takes the resolved caller id, is counted by the rate limiter
and served through the response cache when those are configured. Results are
plain dicts of JSON-friendly values.
"""
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple
from sqlalchemy import func, or_
from sqlalchemy.orm import aliased
import json
import math
import time
import logging

import config
from models import Member, Purchase, Rebate, MonthlyPerformance
from mlm_system.config.ranks import (
    Rank, RANK_CONFIG, PurchaseStatus, RebateStatus, COMPARE_TIME_RANGES,
    ACTIVITY_WINDOW_DAYS, ACTIVITY_SCORE_WINDOW_DAYS, ACTIVITY_SCORE_PURCHASE_WEIGHT,
    ACTIVITY_SCORE_REFERRAL_WEIGHT, ACTIVITY_SCORE_MAX
)
from mlm_system.errors import InvalidArgument, Unauthorized, MemberNotFound, CorruptHierarchy
from mlm_system.events.event_bus import MLMEvents
from mlm_system.services.hierarchy_service import UPLINE, walkDownline
from mlm_system.utils.time_machine import timeMachine, naiveUtc

logger = logging.getLogger(__name__)

SORT_FIELDS = ("name", "createdAt", "rank", "downlineCount", "sales")
SORT_DIRECTIONS = ("asc", "desc")
BOOLEAN_OPTIONS = ("includePerformanceMetrics", "lazyLoadLevels", "includeMetadata")

INVALIDATING_EVENTS = (
    MLMEvents.MEMBER_PLACED,
    MLMEvents.MEMBER_UPLINE_CHANGED,
    MLMEvents.MEMBER_DEACTIVATED,
    MLMEvents.MEMBER_RANK_CHANGED,
    MLMEvents.PERIOD_SETTLED,
)


def rankName(rank: int) -> str:
    try:
        return RANK_CONFIG[Rank(rank)]["displayName"]
    except (ValueError, KeyError):
        return "Unknown"


def formatMoney(value) -> str:
    return str(Decimal(str(value or 0)).quantize(config.MONEY_QUANT))


def percentChange(current, baseline) -> float:
    baseline = Decimal(str(baseline or 0))
    if baseline == 0:
        return 0.0
    return round(float((Decimal(str(current or 0)) - baseline) / baseline * 100), 2)


def _parseDate(key: str, value) -> datetime:
    if isinstance(value, datetime):
        return naiveUtc(value)
    try:
        return naiveUtc(datetime.fromisoformat(str(value)))
    except ValueError:
        raise InvalidArgument(f"{key} must be an ISO date, got {value!r}")


def _parseDecimal(key: str, value) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise InvalidArgument(f"{key} must be a number, got {value!r}")


def parseOptions(options: Optional[Dict], allowUpline: bool = False) -> Dict:
    """Keep the recognised option keys, validated and normalised. Unknown keys are dropped."""
    options = options or {}
    parsed = {}

    if options.get("filterRank") is not None:
        try:
            parsed["filterRank"] = int(options["filterRank"])
        except (TypeError, ValueError):
            raise InvalidArgument(f"filterRank must be an integer, got {options['filterRank']!r}")

    for key in ("filterMinSales", "filterMaxSales"):
        if options.get(key) is not None:
            parsed[key] = _parseDecimal(key, options[key])

    for key in ("filterJoinedAfter", "filterJoinedBefore"):
        if options.get(key) is not None:
            parsed[key] = _parseDate(key, options[key])

    if options.get("sortBy") is not None:
        if options["sortBy"] not in SORT_FIELDS:
            raise InvalidArgument(f"sortBy must be one of {', '.join(SORT_FIELDS)}")
        parsed["sortBy"] = options["sortBy"]

    if options.get("sortDirection") is not None:
        if options["sortDirection"] not in SORT_DIRECTIONS:
            raise InvalidArgument("sortDirection must be 'asc' or 'desc'")
        parsed["sortDirection"] = options["sortDirection"]

    for key in BOOLEAN_OPTIONS:
        if options.get(key):
            parsed[key] = True

    if allowUpline and options.get("uplineId") is not None:
        try:
            parsed["uplineId"] = int(options["uplineId"])
        except (TypeError, ValueError):
            raise InvalidArgument(f"uplineId must be an integer, got {options['uplineId']!r}")

    return parsed


def paginationMetadata(page: int, pageSize: int, totalItems: int) -> Dict:
    totalPages = math.ceil(totalItems / pageSize) if pageSize else 0
    return {
        "page": page,
        "pageSize": pageSize,
        "totalItems": totalItems,
        "totalPages": totalPages,
        "hasNextPage": page < totalPages,
        "hasPreviousPage": page > 1,
    }


class HierarchyQueryService:
    """Read-side genealogy service: downline pages, statistics, lazy levels and search."""

    def __init__(self, sessionFactory, rateLimiter=None, cache=None):
        self.sessionFactory = sessionFactory
        self.rateLimiter = rateLimiter
        self.cache = cache
        self._bus = None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _admit(self, callerId):
        if callerId is None:
            raise Unauthorized("A resolved caller id is required")
        if self.rateLimiter is not None:
            self.rateLimiter.enforce(f"caller:{callerId}")

    async def _cached(self, key: str, factory):
        if self.cache is None:
            return await factory()
        return await self.cache.getOrSet(key, factory)

    @staticmethod
    def _validatePaging(page: int, pageSize: int):
        if not isinstance(page, int) or page < 1:
            raise InvalidArgument(f"page must be >= 1, got {page}")
        if not isinstance(pageSize, int) or not 1 <= pageSize <= config.MAX_PAGE_SIZE:
            raise InvalidArgument(f"pageSize must be between 1 and {config.MAX_PAGE_SIZE}, got {pageSize}")

    @staticmethod
    def _validateLevel(maxLevel: int, name: str = "maxLevel"):
        if not isinstance(maxLevel, int) or maxLevel < 1:
            raise InvalidArgument(f"{name} must be >= 1, got {maxLevel}")

    def subscribe(self, bus):
        """Drop cached responses whenever the hierarchy or the ledger changes."""
        self._bus = bus
        for eventName in INVALIDATING_EVENTS:
            bus.subscribe(eventName, self.handleInvalidation)

    def unsubscribe(self):
        if self._bus is None:
            return
        for eventName in INVALIDATING_EVENTS:
            self._bus.unsubscribe(eventName, self.handleInvalidation)
        self._bus = None

    def handleInvalidation(self, data: Dict):
        if self.cache is not None:
            removed = self.cache.invalidate()
            logger.debug(f"Genealogy cache invalidated, {removed} entries dropped")

    @staticmethod
    def _getMember(session, memberId: int) -> Member:
        member = session.query(Member).filter_by(memberID=memberId).first()
        if not member:
            raise MemberNotFound(memberId)
        return member

    def _memberQuery(self, session):
        """Member rows joined with all-time completed sales and direct downline count."""
        sales = session.query(
            Purchase.memberID.label("memberID"),
            func.sum(Purchase.totalAmount).label("sales")
        ).filter(
            Purchase.status == PurchaseStatus.COMPLETED,
            Purchase.memberID.isnot(None)
        ).group_by(Purchase.memberID).subquery()

        child = aliased(Member)
        counts = session.query(
            child.uplineID.label("parentID"),
            func.count(child.memberID).label("downlineCount")
        ).filter(child.uplineID.isnot(None)).group_by(child.uplineID).subquery()

        salesExpr = func.coalesce(sales.c.sales, 0)
        countExpr = func.coalesce(counts.c.downlineCount, 0)

        query = session.query(Member, salesExpr, countExpr).outerjoin(
            sales, sales.c.memberID == Member.memberID
        ).outerjoin(
            counts, counts.c.parentID == Member.memberID
        )
        return query, salesExpr, countExpr

    def _filtered(self, session, options: Dict):
        query, salesExpr, countExpr = self._memberQuery(session)

        if "filterRank" in options:
            query = query.filter(Member.rank == options["filterRank"])
        if "filterMinSales" in options:
            query = query.filter(salesExpr >= options["filterMinSales"])
        if "filterMaxSales" in options:
            query = query.filter(salesExpr <= options["filterMaxSales"])
        if "filterJoinedAfter" in options:
            query = query.filter(Member.createdAt >= options["filterJoinedAfter"])
        if "filterJoinedBefore" in options:
            query = query.filter(Member.createdAt <= options["filterJoinedBefore"])
        if "uplineId" in options:
            query = query.filter(Member.uplineID == options["uplineId"])

        sortColumns = {
            "name": Member.name,
            "createdAt": Member.createdAt,
            "rank": Member.rank,
            "downlineCount": countExpr,
            "sales": salesExpr,
        }
        column = sortColumns[options.get("sortBy", "createdAt")]
        if options.get("sortDirection", "desc") == "asc":
            query = query.order_by(column.asc(), Member.memberID.asc())
        else:
            query = query.order_by(column.desc(), Member.memberID.desc())
        return query

    @staticmethod
    def _node(member: Member, level: Optional[int], sales, downlineCount) -> Dict:
        return {
            "id": member.memberID,
            "name": member.name,
            "email": member.email,
            "rank": {"id": member.rank, "name": rankName(member.rank)},
            "level": level,
            "uplineId": member.uplineID,
            "walletBalance": formatMoney(member.walletBalance),
            "sales": formatMoney(sales),
            "isActive": bool(member.isActive),
            "createdAt": member.createdAt.isoformat() if member.createdAt else None,
            "downlineCount": int(downlineCount or 0),
        }

    def _expand(self, session, parents: List[Dict], maxLevel: int, visited: set):
        """
        Attach children level by level below parents (all on the same level),
        down to maxLevel. Children use the default newest-first ordering.
        """
        frontier = parents
        while frontier:
            level = frontier[0]["level"] + 1
            if level > maxLevel:
                for node in frontier:
                    node["hasMoreChildren"] = node.get("downlineCount", 0) > 0
                break

            byId = {node["id"]: node for node in frontier}
            query, _, _ = self._memberQuery(session)
            rows = query.filter(Member.uplineID.in_(list(byId))).order_by(
                Member.createdAt.desc(), Member.memberID.desc()
            ).all()

            nextFrontier = []
            for member, sales, count in rows:
                if member.memberID in visited:
                    logger.error(f"Upline cycle detected at member {member.memberID} while expanding genealogy")
                    raise CorruptHierarchy(member.memberID, UPLINE)
                visited.add(member.memberID)

                node = self._node(member, level, sales, count)
                node["children"] = []
                byId[member.uplineID]["children"].append(node)
                nextFrontier.append(node)

            for node in frontier:
                node["hasMoreChildren"] = False
            frontier = nextFrontier

    @staticmethod
    def _downlineIds(session, memberId: int, maxLevel: Optional[int] = None) -> Dict[int, List[int]]:
        return walkDownline(session, memberId, maxLevel)

    @staticmethod
    def _flatten(levels: Dict[int, List[int]]) -> List[int]:
        return [memberId for ids in levels.values() for memberId in ids]

    # ------------------------------------------------------------------
    # GetDownline
    # ------------------------------------------------------------------

    async def getDownline(
            self,
            callerId,
            memberId: int,
            maxLevel: int = None,
            page: int = 1,
            pageSize: int = None,
            options: Optional[Dict] = None
    ) -> Dict:
        """Page of direct downline with deeper levels attached (or lazily referenced)."""
        self._admit(callerId)

        maxLevel = config.MAX_GENEALOGY_DEPTH if maxLevel is None else maxLevel
        pageSize = config.DEFAULT_PAGE_SIZE if pageSize is None else pageSize
        self._validateLevel(maxLevel)
        self._validatePaging(page, pageSize)
        parsed = parseOptions(options)

        key = f"downline:{memberId}:{maxLevel}:{page}:{pageSize}:{json.dumps(parsed, sort_keys=True, default=str)}"
        return await self._cached(key, lambda: self._buildDownline(memberId, maxLevel, page, pageSize, parsed))

    async def _buildDownline(self, memberId: int, maxLevel: int, page: int, pageSize: int, options: Dict) -> Dict:
        startTime = time.perf_counter()

        with self.sessionFactory() as session:
            root = self._getMember(session, memberId)
            rootQuery, _, _ = self._memberQuery(session)
            _, rootSales, rootCount = rootQuery.filter(Member.memberID == memberId).one()

            query = self._filtered(session, dict(options, uplineId=memberId))
            totalItems = query.count()
            rows = query.offset((page - 1) * pageSize).limit(pageSize).all()

            lazy = options.get("lazyLoadLevels", False)
            downline = []
            visited = {memberId}
            for member, sales, count in rows:
                visited.add(member.memberID)
                node = self._node(member, 1, sales, count)
                node["children"] = []
                downline.append(node)

            if lazy:
                for node in downline:
                    node["hasMoreChildren"] = maxLevel > 1 and node["downlineCount"] > 0
                    if node["hasMoreChildren"]:
                        node["continuationToken"] = f"{node['id']}:1:{maxLevel}"
            elif downline:
                self._expand(session, downline, maxLevel, visited)

            rootNode = self._node(root, 0, rootSales, rootCount)
            if options.get("includePerformanceMetrics"):
                rootNode["performanceMetrics"] = self._performanceMetrics(session, memberId)
                for node in downline:
                    node["performanceMetrics"] = self._performanceMetrics(session, node["id"])

        result = {
            "member": rootNode,
            "downline": downline,
            "pagination": paginationMetadata(page, pageSize, totalItems),
        }

        if options.get("includeMetadata"):
            levelCounts: Dict[int, int] = {}
            stack = list(downline)
            while stack:
                node = stack.pop()
                levelCounts[node["level"]] = levelCounts.get(node["level"], 0) + 1
                stack.extend(node.get("children", []))

            result["metadata"] = {
                "maxLevel": maxLevel,
                "initialDepthLoaded": 1 if lazy else maxLevel,
                "lazyLoading": lazy,
                "loadedNodes": sum(levelCounts.values()),
                "levelCounts": {str(level): levelCounts[level] for level in sorted(levelCounts)},
                "executionTime": f"{(time.perf_counter() - startTime) * 1000:.2f}ms",
                "filters": {
                    "rank": options.get("filterRank"),
                    "minSales": str(options["filterMinSales"]) if "filterMinSales" in options else None,
                    "maxSales": str(options["filterMaxSales"]) if "filterMaxSales" in options else None,
                    "joinedAfter": options["filterJoinedAfter"].isoformat() if "filterJoinedAfter" in options else None,
                    "joinedBefore": options["filterJoinedBefore"].isoformat() if "filterJoinedBefore" in options else None,
                },
                "sorting": {
                    "by": options.get("sortBy", "createdAt"),
                    "direction": options.get("sortDirection", "desc"),
                },
            }

        return result

    # ------------------------------------------------------------------
    # LoadAdditionalLevels
    # ------------------------------------------------------------------

    async def loadAdditionalLevels(self, callerId, parentId: int, currentLevel: int, maxLevel: int) -> Dict:
        """Children of parentId from currentLevel + 1 down to maxLevel, same node shape as getDownline."""
        self._admit(callerId)

        if not isinstance(currentLevel, int) or currentLevel < 0:
            raise InvalidArgument(f"currentLevel must be >= 0, got {currentLevel}")
        self._validateLevel(maxLevel)
        if maxLevel <= currentLevel:
            raise InvalidArgument(f"maxLevel ({maxLevel}) must be greater than currentLevel ({currentLevel})")

        key = f"levels:{parentId}:{currentLevel}:{maxLevel}"
        return await self._cached(key, lambda: self._buildAdditionalLevels(parentId, currentLevel, maxLevel))

    async def loadFromToken(self, callerId, token: str) -> Dict:
        try:
            parentId, currentLevel, maxLevel = (int(part) for part in token.split(":"))
        except (AttributeError, ValueError):
            raise InvalidArgument(f"Malformed continuation token: {token!r}")
        return await self.loadAdditionalLevels(callerId, parentId, currentLevel, maxLevel)

    async def _buildAdditionalLevels(self, parentId: int, currentLevel: int, maxLevel: int) -> Dict:
        startTime = time.perf_counter()

        with self.sessionFactory() as session:
            self._getMember(session, parentId)
            anchor = {"id": parentId, "level": currentLevel, "children": []}
            self._expand(session, [anchor], maxLevel, {parentId})

        return {
            "children": anchor["children"],
            "metadata": {
                "memberId": parentId,
                "currentLevel": currentLevel,
                "maxLevel": maxLevel,
                "loadedAt": timeMachine.now.isoformat(),
                "executionTime": f"{(time.perf_counter() - startTime) * 1000:.2f}ms",
            },
        }

    # ------------------------------------------------------------------
    # GetStatistics
    # ------------------------------------------------------------------

    async def getStatistics(self, callerId, memberId: int, maxLevel: int = None) -> Dict:
        """Census of the downline up to maxLevel hops."""
        self._admit(callerId)
        maxLevel = config.MAX_GENEALOGY_DEPTH if maxLevel is None else maxLevel
        self._validateLevel(maxLevel)

        key = f"statistics:{memberId}:{maxLevel}"
        return await self._cached(key, lambda: self._buildStatistics(memberId, maxLevel))

    async def _buildStatistics(self, memberId: int, maxLevel: int) -> Dict:
        with self.sessionFactory() as session:
            self._getMember(session, memberId)
            levels = self._downlineIds(session, memberId, maxLevel)
            downlineIds = self._flatten(levels)
            totalUsers = len(downlineIds) + 1

            totalBalance = Decimal("0")
            rankDistribution = []
            activeCount = 0

            if downlineIds:
                totalBalance = session.query(func.sum(Member.walletBalance)).filter(
                    Member.memberID.in_(downlineIds)
                ).scalar() or 0

                rows = session.query(Member.rank, func.count(Member.memberID)).filter(
                    Member.memberID.in_(downlineIds)
                ).group_by(Member.rank).order_by(Member.rank).all()
                rankDistribution = [
                    {"rankId": rank, "rankName": rankName(rank), "count": count}
                    for rank, count in rows
                ]

                since = timeMachine.now - timedelta(days=ACTIVITY_WINDOW_DAYS)
                activeCount = session.query(func.count(func.distinct(Purchase.memberID))).filter(
                    Purchase.memberID.in_(downlineIds),
                    Purchase.status == PurchaseStatus.COMPLETED,
                    Purchase.createdAt >= since,
                ).scalar() or 0

        activePercentage = round(activeCount / (totalUsers - 1) * 100, 2) if totalUsers > 1 else 0

        return {
            "memberId": memberId,
            "totalUsers": totalUsers,
            "levelCounts": {str(level): len(ids) for level, ids in levels.items()},
            "directDownlineCount": len(levels.get(1, [])),
            "totalDownlineBalance": formatMoney(totalBalance),
            "rankDistribution": rankDistribution,
            "activeUsersLast30Days": activeCount,
            "activeUserPercentage": activePercentage,
        }

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
            self,
            callerId,
            query: Optional[str] = None,
            filters: Optional[Dict] = None,
            page: int = 1,
            pageSize: Optional[int] = None
    ) -> Dict:
        """
        Free-text match on name, email or id plus the getDownline filter vocabulary
        (and uplineId). pageSize None returns every match on one page.
        """
        self._admit(callerId)
        if pageSize is not None:
            self._validatePaging(page, pageSize)
        elif page != 1:
            raise InvalidArgument("page must be 1 when pageSize is not given")
        parsed = parseOptions(filters, allowUpline=True)
        text = (query or "").strip()

        key = f"search:{text}:{page}:{pageSize}:{json.dumps(parsed, sort_keys=True, default=str)}"
        return await self._cached(key, lambda: self._buildSearch(text, parsed, page, pageSize))

    async def _buildSearch(self, text: str, options: Dict, page: int, pageSize: Optional[int]) -> Dict:
        with self.sessionFactory() as session:
            query = self._filtered(session, options)

            if text:
                pattern = f"%{text}%"
                conditions = [Member.name.ilike(pattern), Member.email.ilike(pattern)]
                if text.isdigit():
                    conditions.append(Member.memberID == int(text))
                query = query.filter(or_(*conditions))

            totalItems = query.count()
            if pageSize is not None:
                query = query.offset((page - 1) * pageSize).limit(pageSize)

            members = [self._node(member, None, sales, count) for member, sales, count in query.all()]

        return {
            "query": text,
            "members": members,
            "pagination": paginationMetadata(page, pageSize or totalItems, totalItems),
        }

    # ------------------------------------------------------------------
    # Performance metrics and comparisons
    # ------------------------------------------------------------------

    def _salesSum(self, session, memberIds: List[int], since: Optional[datetime] = None) -> Decimal:
        if not memberIds:
            return Decimal("0")
        query = session.query(func.sum(Purchase.totalAmount)).filter(
            Purchase.memberID.in_(memberIds),
            Purchase.status == PurchaseStatus.COMPLETED,
        )
        if since is not None:
            query = query.filter(Purchase.createdAt >= since)
        return Decimal(str(query.scalar() or 0))

    def _performanceMetrics(self, session, memberId: int, since: Optional[datetime] = None,
                            downlineIds: Optional[List[int]] = None) -> Dict:
        if downlineIds is None:
            downlineIds = self._flatten(self._downlineIds(session, memberId))
        now = timeMachine.now

        personalSales = self._salesSum(session, [memberId], since)
        teamSales = self._salesSum(session, downlineIds, since)

        rebates = session.query(func.sum(Rebate.amount)).filter(
            Rebate.receiverID == memberId,
            Rebate.status == RebateStatus.PROCESSED,
        )
        if since is not None:
            rebates = rebates.filter(Rebate.processedAt >= since)
        rebatesEarned = rebates.scalar() or 0

        newSince = since or now - timedelta(days=ACTIVITY_WINDOW_DAYS)
        newTeamMembers = 0
        if downlineIds:
            newTeamMembers = session.query(func.count(Member.memberID)).filter(
                Member.memberID.in_(downlineIds),
                Member.createdAt >= newSince,
            ).scalar() or 0

        scoreSince = now - timedelta(days=ACTIVITY_SCORE_WINDOW_DAYS)
        recentPurchases = session.query(func.count(Purchase.purchaseID)).filter(
            Purchase.memberID == memberId,
            Purchase.status == PurchaseStatus.COMPLETED,
            Purchase.createdAt >= scoreSince,
        ).scalar() or 0
        recentReferrals = session.query(func.count(Member.memberID)).filter(
            Member.uplineID == memberId,
            Member.createdAt >= scoreSince,
        ).scalar() or 0

        activityScore = min(
            ACTIVITY_SCORE_MAX,
            recentPurchases * ACTIVITY_SCORE_PURCHASE_WEIGHT + recentReferrals * ACTIVITY_SCORE_REFERRAL_WEIGHT
        )

        return {
            "personalSales": formatMoney(personalSales),
            "teamSales": formatMoney(teamSales),
            "totalSales": formatMoney(personalSales + teamSales),
            "rebatesEarned": formatMoney(rebatesEarned),
            "teamSize": len(downlineIds),
            "newTeamMembers": newTeamMembers,
            "activityScore": activityScore,
        }

    async def getPerformanceMetrics(self, callerId, memberId: int) -> Dict:
        self._admit(callerId)

        async def build():
            with self.sessionFactory() as session:
                self._getMember(session, memberId)
                return self._performanceMetrics(session, memberId)

        return await self._cached(f"metrics:{memberId}", build)

    async def compareMembers(self, callerId, memberId1: int, memberId2: int, timeRange: str = "last30days") -> Dict:
        """Side-by-side comparison of two members' downlines over a recent time range."""
        self._admit(callerId)
        if timeRange not in COMPARE_TIME_RANGES:
            raise InvalidArgument(f"timeRange must be one of {', '.join(COMPARE_TIME_RANGES)}")

        async def build():
            since = timeMachine.now - timedelta(days=COMPARE_TIME_RANGES[timeRange])
            with self.sessionFactory() as session:
                sides = []
                for memberId in (memberId1, memberId2):
                    member = self._getMember(session, memberId)
                    downlineIds = self._flatten(self._downlineIds(session, memberId))
                    directCount = session.query(func.count(Member.memberID)).filter(
                        Member.uplineID == memberId
                    ).scalar() or 0
                    sides.append((member, downlineIds, directCount,
                                  self._performanceMetrics(session, memberId, since, downlineIds)))

            (member1, ids1, count1, metrics1), (member2, ids2, count2, metrics2) = sides
            set1, set2 = set(ids1), set(ids2)

            def side(member, count, metrics):
                return {
                    "id": member.memberID,
                    "name": member.name,
                    "email": member.email,
                    "rankName": rankName(member.rank),
                    "downlineCount": count,
                    "walletBalance": formatMoney(member.walletBalance),
                    "performanceMetrics": metrics,
                }

            differences = {
                "downlineCount": count1 - count2,
                "downlineCountPercentage": percentChange(count1, count2),
                "uniqueMembers1": len(set1 - set2),
                "uniqueMembers2": len(set2 - set1),
                "commonMembers": len(set1 & set2),
            }
            for field in ("personalSales", "teamSales", "rebatesEarned"):
                value1, value2 = Decimal(metrics1[field]), Decimal(metrics2[field])
                differences[field] = formatMoney(value1 - value2)
                differences[f"{field}Percentage"] = percentChange(value1, value2)
            differences["newMembers"] = metrics1["newTeamMembers"] - metrics2["newTeamMembers"]
            differences["newMembersPercentage"] = percentChange(metrics1["newTeamMembers"], metrics2["newTeamMembers"])

            return {
                "member1": side(member1, count1, metrics1),
                "member2": side(member2, count2, metrics2),
                "differences": differences,
                "timeRange": timeRange,
            }

        return await self._cached(f"compare:{memberId1}:{memberId2}:{timeRange}", build)

    async def comparePeriods(self, callerId, memberId: int, before: Tuple[int, int], after: Tuple[int, int]) -> Dict:
        """Before/after view of a member's settled MonthlyPerformance for two periods."""
        self._admit(callerId)
        fields = (
            "personalPV", "leftLegPV", "rightLegPV", "totalGroupPV", "directReferralBonus",
            "levelCommissions", "groupVolumeBonus", "performanceBonus", "totalEarnings",
        )

        async def build():
            with self.sessionFactory() as session:
                self._getMember(session, memberId)
                snapshots = {}
                for label, (year, month) in (("before", before), ("after", after)):
                    row = session.query(MonthlyPerformance).filter_by(
                        memberID=memberId, year=year, month=month
                    ).first()
                    snapshots[label] = {
                        "year": year,
                        "month": month,
                        "settled": row is not None and row.settledAt is not None,
                        **{name: formatMoney(getattr(row, name) if row else 0) for name in fields},
                    }

            changes = {}
            for name in fields:
                previous, current = Decimal(snapshots["before"][name]), Decimal(snapshots["after"][name])
                changes[name] = {
                    "difference": formatMoney(current - previous),
                    "percentage": percentChange(current, previous),
                }

            return {"memberId": memberId, **snapshots, "changes": changes}

        key = f"periods:{memberId}:{before[0]}-{before[1]}:{after[0]}-{after[1]}"
        return await self._cached(key, build)

    async def warmCache(self, callerId, memberIds: List[int], maxLevel: int = None) -> int:
        """Pre-compute first-page downlines and statistics for the given members."""
        if self.cache is None:
            return 0
        if callerId is None:
            raise Unauthorized("A resolved caller id is required")

        maxLevel = config.MAX_GENEALOGY_DEPTH if maxLevel is None else maxLevel
        warmed = 0
        for memberId in memberIds:
            try:
                await self._cached(
                    f"downline:{memberId}:{maxLevel}:1:{config.DEFAULT_PAGE_SIZE}:{json.dumps({})}",
                    lambda: self._buildDownline(memberId, maxLevel, 1, config.DEFAULT_PAGE_SIZE, {})
                )
                await self._cached(
                    f"statistics:{memberId}:{maxLevel}",
                    lambda: self._buildStatistics(memberId, maxLevel)
                )
                warmed += 1
            except MemberNotFound:
                logger.warning(f"Skipping cache warm-up for unknown member {memberId}")

        logger.info(f"Warmed genealogy cache for {warmed} of {len(memberIds)} members")
        return warmed
