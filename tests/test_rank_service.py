"""
Tests for rank advancement.

Tests cover:
- Eligibility against personal, group, direct and qualified downline figures
- One-step advancement with history and events
- Batch runs with failure isolation
- Manual assignment by an admin
"""

from datetime import datetime
from decimal import Decimal

import pytest

from models import Member, RankAdvancement
from mlm_system.config.ranks import Rank, RANK_CONFIG, RankMethod
from mlm_system.errors import InvalidArgument, Unauthorized, MemberNotFound
from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.services.rank_service import RankService
from mlm_system.utils.time_machine import timeMachine


@pytest.fixture
def network(seed):
    """
    Upline: 1 -> 2 -> 4
            1 -> 3
    Lifetime sales: 1 = 1000, 2 = 3000, 3 = 1000 (group of 1 = 5000).
    """
    seed.product(1)
    seed.member(1)
    seed.member(2, uplineId=1)
    seed.member(3, uplineId=1)
    seed.member(4, uplineId=2)
    seed.purchase(1, 1, 10, amount=1000)
    seed.purchase(2, 1, 30, amount=3000)
    seed.purchase(3, 1, 10, amount=1000)
    return seed


class TestEligibility:
    """Test the requirement checks."""

    @pytest.mark.asyncio
    async def test_starter_qualifies_for_bronze(self, session, network):
        eligibility = await RankService(session).checkEligibility(1)

        assert eligibility.currentRank == Rank.STARTER
        assert eligibility.nextRank == Rank.BRONZE
        assert eligibility.eligible
        assert eligibility.requirements["personalSales"].actual == Decimal("1000")
        assert eligibility.requirements["groupSales"].actual == Decimal("5000")
        assert eligibility.requirements["directDownline"].actual == 2
        assert "qualifiedDownline" not in eligibility.requirements

    @pytest.mark.asyncio
    async def test_missing_direct_downline(self, session, network):
        eligibility = await RankService(session).checkEligibility(2)

        assert not eligibility.eligible
        assert eligibility.requirements["personalSales"].qualified
        assert not eligibility.requirements["directDownline"].qualified
        assert eligibility.toDict()["requirements"]["directDownline"] == {
            "required": "2", "actual": "1", "qualified": False,
        }

    @pytest.mark.asyncio
    async def test_qualified_downline_counts_whole_downline(self, session, network, monkeypatch):
        """Silver needs two Bronze members anywhere below, not only direct referrals."""
        monkeypatch.setitem(RANK_CONFIG, Rank.SILVER, {
            "displayName": "Silver",
            "personalSalesRequired": Decimal("0"),
            "groupSalesRequired": Decimal("0"),
            "directDownlineRequired": 0,
            "qualifiedDownlineRequired": 2,
            "qualifiedRank": Rank.BRONZE,
        })
        network.link(1, rank=int(Rank.BRONZE))
        network.link(3, rank=int(Rank.SILVER))
        network.link(4, rank=int(Rank.BRONZE))

        eligibility = await RankService(session).checkEligibility(1)

        assert eligibility.nextRank == Rank.SILVER
        assert eligibility.requirements["qualifiedDownline"].actual == 2
        assert eligibility.eligible

    @pytest.mark.asyncio
    async def test_highest_rank(self, session, network):
        network.link(1, rank=int(Rank.DIAMOND))

        eligibility = await RankService(session).checkEligibility(1)

        assert eligibility.nextRank is None
        assert not eligibility.eligible
        assert await RankService(session).advanceMember(1) is None

    @pytest.mark.asyncio
    async def test_sales_after_virtual_now_ignored(self, session, network):
        timeMachine.setTime(datetime(2024, 3, 1))

        eligibility = await RankService(session).checkEligibility(1)

        assert eligibility.requirements["groupSales"].actual == Decimal("0")
        assert not eligibility.eligible

    @pytest.mark.asyncio
    async def test_unknown_member(self, session, network):
        with pytest.raises(MemberNotFound):
            await RankService(session).checkEligibility(99)


class TestAdvancement:
    """Test granting ranks."""

    @pytest.mark.asyncio
    async def test_advance_records_history_and_emits(self, session, network):
        received = []
        eventBus.subscribe(MLMEvents.MEMBER_RANK_CHANGED, received.append)

        newRank = await RankService(session).advanceMember(1)

        assert newRank == Rank.BRONZE
        assert session.query(Member).filter_by(memberID=1).one().rank == int(Rank.BRONZE)

        history = await RankService(session).getHistory(1)
        assert len(history) == 1
        assert (history[0].previousRank, history[0].newRank) == (int(Rank.STARTER), int(Rank.BRONZE))
        assert history[0].method == RankMethod.NATURAL
        assert history[0].groupSales == Decimal("5000")
        assert history[0].directDownlineCount == 2

        assert received == [{
            "memberId": 1,
            "previousRank": int(Rank.STARTER),
            "newRank": int(Rank.BRONZE),
            "method": RankMethod.NATURAL,
        }]

    @pytest.mark.asyncio
    async def test_one_rank_per_call(self, session, network):
        service = RankService(session)

        assert await service.advanceMember(1) == Rank.BRONZE
        assert await service.advanceMember(1) is None
        assert session.query(RankAdvancement).count() == 1

    @pytest.mark.asyncio
    async def test_not_eligible_leaves_rank(self, session, network):
        assert await RankService(session).advanceMember(2) is None
        assert session.query(Member).filter_by(memberID=2).one().rank == int(Rank.STARTER)
        assert session.query(RankAdvancement).count() == 0


class TestBatch:
    """Test the run over every member."""

    @pytest.mark.asyncio
    async def test_process_all(self, session, network):
        network.member(5, uplineId=1, isActive=False)

        result = await RankService(session).processAllAdvancements()

        assert result["processed"] == 4
        assert result["advanced"] == [{"memberId": 1, "newRank": int(Rank.BRONZE)}]
        assert result["failed"] == []

    @pytest.mark.asyncio
    async def test_corrupt_branch_isolated(self, session, network):
        network.member(5)
        network.member(6, uplineId=5)
        network.link(5, uplineID=6)

        result = await RankService(session).processAllAdvancements()

        assert [item["memberId"] for item in result["failed"]] == [5, 6]
        assert result["advanced"] == [{"memberId": 1, "newRank": int(Rank.BRONZE)}]


class TestAssignment:
    """Test manual rank assignment."""

    @pytest.mark.asyncio
    async def test_admin_assigns(self, session, network):
        network.member(9, capabilities={"admin": True})

        rank = await RankService(session).assignRank(4, int(Rank.GOLD), adminId=9)

        assert rank == Rank.GOLD
        record = session.query(RankAdvancement).filter_by(memberID=4).one()
        assert record.method == RankMethod.ASSIGNED
        assert record.assignedBy == 9

    @pytest.mark.asyncio
    async def test_non_admin_refused(self, session, network):
        with pytest.raises(Unauthorized):
            await RankService(session).assignRank(4, int(Rank.GOLD), adminId=2)

        assert session.query(Member).filter_by(memberID=4).one().rank == int(Rank.STARTER)

    @pytest.mark.asyncio
    async def test_unknown_rank(self, session, network):
        network.member(9, capabilities={"admin": True})

        with pytest.raises(InvalidArgument):
            await RankService(session).assignRank(4, 42, adminId=9)
