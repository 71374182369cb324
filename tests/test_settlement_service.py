"""
Tests for monthly settlement.

Tests cover:
- Rebate rows and wallet credits for a simple chain
- Re-running a settled period
- Atomic rollback when a write fails
- Failure isolation between members
- Cutoff bookkeeping and reporting helpers
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from models import Member, Rebate, WalletTransaction, MonthlyPerformance
from mlm_system.config.ranks import CommissionType, CutoffStatus
from mlm_system.errors import InvalidArgument, ConfigurationConflict
from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.services.settlement_service import SettlementService


@pytest.fixture
def chain(seed):
    """
    R(1) <- U(2) <- D(3). D buys 100 PV of product X(1); X pays level1=10%, level2=5%.
    """
    seed.product(1)
    seed.member(1)
    seed.member(2, uplineId=1)
    seed.member(3, uplineId=2)
    seed.rebate(1, 1, "10")
    seed.rebate(1, 2, "5")
    seed.purchase(3, 1, 100)
    return seed


def balance(sessionFactory, memberId):
    with sessionFactory() as session:
        return session.query(Member).filter_by(memberID=memberId).one().walletBalance


class TestSettlePeriod:
    """Test a full period run."""

    @pytest.mark.asyncio
    async def test_level_rebates_and_wallets(self, sessionFactory, chain):
        result = await SettlementService(sessionFactory).settlePeriod(2024, 3)

        assert result.processedCount == 3
        assert result.totalDisbursed == Decimal("15.00")
        assert result.failed == []

        with sessionFactory() as session:
            rebates = session.query(Rebate).order_by(Rebate.level).all()
            assert [(r.receiverID, r.level, r.amount) for r in rebates] == [
                (2, 1, Decimal("10.00")),
                (1, 2, Decimal("5.00")),
            ]
            assert all(r.generatorID == 3 for r in rebates)
            assert all(r.walletTransactionID is not None for r in rebates)
            assert all(r.rebateType == CommissionType.LEVEL_COMMISSION.value for r in rebates)

            transactions = session.query(WalletTransaction).order_by(WalletTransaction.memberID).all()
            assert [(t.memberID, t.amount) for t in transactions] == [
                (1, Decimal("5.00")),
                (2, Decimal("10.00")),
            ]

        assert balance(sessionFactory, 2) == Decimal("10.00")
        assert balance(sessionFactory, 1) == Decimal("5.00")
        assert balance(sessionFactory, 3) == Decimal("0")

    @pytest.mark.asyncio
    async def test_performance_rows_for_everyone(self, sessionFactory, chain):
        await SettlementService(sessionFactory).settlePeriod(2024, 3)

        with sessionFactory() as session:
            rows = session.query(MonthlyPerformance).order_by(MonthlyPerformance.memberID).all()
            assert [row.memberID for row in rows] == [1, 2, 3]
            assert all(row.settledAt is not None for row in rows)
            assert rows[2].personalPV == Decimal("100")
            assert rows[2].totalEarnings == Decimal("0")

    @pytest.mark.asyncio
    async def test_rerun_pays_nothing(self, sessionFactory, chain):
        service = SettlementService(sessionFactory)
        await service.settlePeriod(2024, 3)

        again = await service.settlePeriod(2024, 3)

        assert again.processedCount == 0
        assert again.totalDisbursed == Decimal("0")
        assert again.skipped == [1, 2, 3]
        assert balance(sessionFactory, 2) == Decimal("10.00")
        with sessionFactory() as session:
            assert session.query(Rebate).count() == 2
            assert session.query(WalletTransaction).count() == 2

    @pytest.mark.asyncio
    async def test_inactive_members_skipped(self, sessionFactory, chain):
        chain.link(2, isActive=False)

        result = await SettlementService(sessionFactory).settlePeriod(2024, 3)

        assert result.processedCount == 2
        assert balance(sessionFactory, 2) == Decimal("0")

    @pytest.mark.asyncio
    async def test_invalid_period(self, sessionFactory, chain):
        with pytest.raises(InvalidArgument):
            await SettlementService(sessionFactory).settlePeriod(2024, 13)

    @pytest.mark.asyncio
    async def test_configuration_conflict_aborts(self, sessionFactory, chain):
        chain.tier("A", 0, 1000, percentage="1")
        chain.tier("B", 500, None, percentage="2")

        with pytest.raises(ConfigurationConflict):
            await SettlementService(sessionFactory).settlePeriod(2024, 3)

        with sessionFactory() as session:
            assert session.query(MonthlyPerformance).count() == 0

    @pytest.mark.asyncio
    async def test_cutoff_and_events(self, sessionFactory, chain):
        settled = []
        periods = []
        eventBus.subscribe(MLMEvents.MEMBER_SETTLED, lambda data: settled.append(data["memberId"]))
        eventBus.subscribe(MLMEvents.PERIOD_SETTLED, lambda data: periods.append(data))

        service = SettlementService(sessionFactory, maxWorkers=2)
        await service.settlePeriod(2024, 3)

        cutoff = await service.getCutoff(2024, 3)
        assert cutoff["status"] == CutoffStatus.COMPLETED
        assert cutoff["cutoffDay"] == 25
        assert sorted(settled) == [1, 2, 3]
        assert periods[0]["processedCount"] == 3
        assert periods[0]["totalDisbursed"] == "15.00"


class TestConservationBound:
    """Rebates from one purchase never exceed its PV times the configured level percentages."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pv", ["0.15", "0.37", "1.99", "33.33"])
    async def test_sub_cent_purchases_capped(self, sessionFactory, chain, pv):
        purchase = chain.purchase(3, 1, pv)

        await SettlementService(sessionFactory).settlePeriod(2024, 3)

        with sessionFactory() as session:
            paid = sum(
                (r.amount for r in session.query(Rebate).filter_by(purchaseID=purchase.purchaseID).all()),
                Decimal("0")
            )
        assert paid <= Decimal(pv) * Decimal("15") / Decimal("100")


class TestFailureHandling:
    """Test rollback and isolation."""

    @pytest.mark.asyncio
    async def test_failed_credit_rolls_back_member(self, sessionFactory, chain, monkeypatch):
        """A write error after rebates are flushed leaves no trace for that member."""
        service = SettlementService(sessionFactory, writeRetries=0)
        realCredit = service._creditWallet

        def failingCredit(session, memberId, amount, year, month):
            if memberId == 2:
                raise OperationalError("UPDATE members", {}, Exception("database is locked"))
            return realCredit(session, memberId, amount, year, month)

        monkeypatch.setattr(service, "_creditWallet", failingCredit)

        result = await service.settlePeriod(2024, 3)

        assert [item["memberId"] for item in result.failed] == [2]
        assert result.processedCount == 2
        assert balance(sessionFactory, 2) == Decimal("0")
        assert balance(sessionFactory, 1) == Decimal("5.00")
        with sessionFactory() as session:
            assert session.query(Rebate).filter_by(receiverID=2).count() == 0
            assert session.query(MonthlyPerformance).filter_by(memberID=2).count() == 0
            assert session.query(WalletTransaction).filter_by(memberID=2).count() == 0

        cutoff = await service.getCutoff(2024, 3)
        assert cutoff["status"] == CutoffStatus.FAILED

        # the next run pays only the member that failed
        monkeypatch.setattr(service, "_creditWallet", realCredit)
        retry = await service.settlePeriod(2024, 3)

        assert retry.processedCount == 1
        assert retry.totalDisbursed == Decimal("10.00")
        assert balance(sessionFactory, 2) == Decimal("10.00")
        assert (await service.getCutoff(2024, 3))["status"] == CutoffStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_retry_succeeds_after_transient_error(self, sessionFactory, chain, monkeypatch):
        service = SettlementService(sessionFactory, writeRetries=1)
        realCredit = service._creditWallet
        calls = []

        def flakyCredit(session, memberId, amount, year, month):
            calls.append(memberId)
            if calls.count(memberId) == 1:
                raise OperationalError("UPDATE members", {}, Exception("database is locked"))
            return realCredit(session, memberId, amount, year, month)

        monkeypatch.setattr(service, "_creditWallet", flakyCredit)

        result = await service.settlePeriod(2024, 3)

        assert result.failed == []
        assert balance(sessionFactory, 2) == Decimal("10.00")
        with sessionFactory() as session:
            assert session.query(WalletTransaction).filter_by(memberID=2).count() == 1

    @pytest.mark.asyncio
    async def test_corrupt_branch_does_not_block_others(self, sessionFactory, chain):
        """Member 4 sits inside its own left leg; everyone else still settles."""
        chain.member(4)
        chain.member(5)
        chain.link(4, leftLegID=5)
        chain.link(5, leftLegID=4)
        failed = []
        eventBus.subscribe(MLMEvents.MEMBER_SETTLEMENT_FAILED, lambda data: failed.append(data["memberId"]))

        result = await SettlementService(sessionFactory).settlePeriod(2024, 3)

        assert sorted(item["memberId"] for item in result.failed) == [4, 5]
        assert all("Cycle" in item["error"] for item in result.failed)
        assert sorted(failed) == [4, 5]
        assert result.processedCount == 3
        assert balance(sessionFactory, 2) == Decimal("10.00")


class TestReporting:
    """Test read helpers over settled data."""

    @pytest.mark.asyncio
    async def test_top_earners_and_totals(self, sessionFactory, chain):
        service = SettlementService(sessionFactory)
        await service.settlePeriod(2024, 3)

        earners = await service.getTopEarners(2024, 3)
        totals = await service.getLedgerTotals(2024, 3)
        history = await service.getMonthlyPerformance(2)

        assert [item["memberId"] for item in earners] == [2, 1]
        assert earners[0]["totalEarnings"] == "10.00"
        assert totals == {CommissionType.LEVEL_COMMISSION.value: Decimal("15.00")}
        assert len(history) == 1
        assert history[0]["levelCommissions"] == "10.00"

    @pytest.mark.asyncio
    async def test_top_earners_limit(self, sessionFactory):
        with pytest.raises(InvalidArgument):
            await SettlementService(sessionFactory).getTopEarners(2024, 3, limit=0)
