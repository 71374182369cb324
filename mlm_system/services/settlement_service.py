# mlm_system/services/settlement_service.py
"""
Monthly settlement processor.

Each active member is settled in its own session and its own transaction:
MonthlyPerformance, Rebate rows, the wallet credit and the WalletTransaction
commit together or not at all. A MonthlyPerformance row that is already
settled makes the member a no-op, so re-running a period only pays the
members that were not settled before.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
import asyncio
import logging

import config
from models import Member, Rebate, WalletTransaction, MonthlyPerformance, MonthlyCutoff
from mlm_system.config.ranks import CutoffStatus, RebateStatus
from mlm_system.errors import InvalidArgument, SettlementWriteFailure
from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.services.commission_service import CommissionService, CommissionBreakdown
from mlm_system.services.plan_service import PlanService, CompensationPlan
from mlm_system.services.volume_service import VolumeCache
from mlm_system.utils.time_machine import timeMachine, periodWindow

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

COMMITTED = "committed"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class MemberOutcome:
    memberId: int
    state: str
    amount: Decimal = ZERO
    error: Optional[str] = None


@dataclass
class SettlementResult:
    year: int
    month: int
    processedCount: int = 0
    totalDisbursed: Decimal = ZERO
    skipped: List[int] = field(default_factory=list)
    failed: List[Dict] = field(default_factory=list)

    def toDict(self) -> Dict:
        return {
            "year": self.year,
            "month": self.month,
            "processedCount": self.processedCount,
            "totalDisbursed": str(self.totalDisbursed),
            "skipped": list(self.skipped),
            "failed": [dict(item) for item in self.failed],
        }


class SettlementService:
    """Settles commissions for a period into the ledger and wallets."""

    def __init__(self, sessionFactory, maxWorkers: int = None, writeRetries: int = None, bus=None):
        self.sessionFactory = sessionFactory
        self.maxWorkers = maxWorkers or config.SETTLEMENT_MAX_WORKERS
        self.writeRetries = config.SETTLEMENT_WRITE_RETRIES if writeRetries is None else writeRetries
        self.bus = bus or eventBus

    async def settlePeriod(self, year: int, month: int) -> SettlementResult:
        """Settle every active member for (year, month). Safe to call again."""
        if not isinstance(year, int) or year < 1:
            raise InvalidArgument(f"Invalid year: {year}")
        if not isinstance(month, int) or not 1 <= month <= 12:
            raise InvalidArgument(f"Invalid month: {month}")

        start, end = periodWindow(year, month)

        with self.sessionFactory() as session:
            # Configuration conflicts abort before any member is touched
            plan = await PlanService(session).loadPlan()
            self._markCutoff(session, year, month, plan.cutoffDay, CutoffStatus.PROCESSING)
            roster = [
                memberId for (memberId,) in session.query(Member.memberID).filter(
                    Member.isActive == True  # noqa: E712
                ).order_by(Member.memberID).all()
            ]

        logger.info(
            f"Settling {year}-{month:02d} for {len(roster)} members "
            f"({plan.structure}, {self.maxWorkers} workers)"
        )

        result = SettlementResult(year=year, month=month)
        volumeCache = VolumeCache()
        semaphore = asyncio.Semaphore(self.maxWorkers)

        try:
            outcomes = await asyncio.gather(*[
                self._settleBounded(semaphore, memberId, year, month, plan, volumeCache)
                for memberId in roster
            ])
        except Exception as e:
            with self.sessionFactory() as session:
                self._markCutoff(session, year, month, plan.cutoffDay, CutoffStatus.FAILED, f"Error: {e}")
            raise

        for outcome in outcomes:
            if outcome.state == COMMITTED:
                result.processedCount += 1
                result.totalDisbursed += outcome.amount
            elif outcome.state == SKIPPED:
                result.skipped.append(outcome.memberId)
            else:
                result.failed.append({"memberId": outcome.memberId, "error": outcome.error})

        notes = (
            f"Processed {len(roster)} members. {result.processedCount} settled, "
            f"{len(result.skipped)} skipped, {len(result.failed)} failed."
        )
        status = CutoffStatus.FAILED if result.failed else CutoffStatus.COMPLETED
        with self.sessionFactory() as session:
            self._markCutoff(session, year, month, plan.cutoffDay, status, notes)

        logger.info(f"Settlement {year}-{month:02d}: {notes} Disbursed {result.totalDisbursed}")
        await self.bus.emit(MLMEvents.PERIOD_SETTLED, result.toDict())
        return result

    async def _settleBounded(self, semaphore, memberId, year, month, plan, volumeCache) -> MemberOutcome:
        async with semaphore:
            try:
                outcome = await self.settleMember(memberId, year, month, plan, volumeCache)
            except Exception as e:
                logger.error(f"Settlement failed for member {memberId} in {year}-{month:02d}: {e}", exc_info=True)
                outcome = MemberOutcome(memberId, FAILED, error=str(e))

        if outcome.state == COMMITTED:
            await self.bus.emit(MLMEvents.MEMBER_SETTLED, {
                "memberId": memberId, "year": year, "month": month, "amount": str(outcome.amount),
            })
        elif outcome.state == FAILED:
            await self.bus.emit(MLMEvents.MEMBER_SETTLEMENT_FAILED, {
                "memberId": memberId, "year": year, "month": month, "error": outcome.error,
            })
        return outcome

    async def settleMember(
            self,
            memberId: int,
            year: int,
            month: int,
            plan: CompensationPlan,
            volumeCache: Optional[VolumeCache] = None
    ) -> MemberOutcome:
        """
        Settle one member. The idempotency check runs inside every attempt,
        so a retry after a failed commit never pays twice.
        """
        start, end = periodWindow(year, month)
        lastError = None

        for attempt in range(1, self.writeRetries + 2):
            session = self.sessionFactory()
            try:
                existing = session.query(MonthlyPerformance).filter_by(
                    memberID=memberId, year=year, month=month
                ).first()
                if existing is not None and existing.isSettled:
                    logger.debug(f"Member {memberId} already settled for {year}-{month:02d}")
                    return MemberOutcome(memberId, SKIPPED)

                breakdown = await CommissionService(session, volumeCache).calculate(memberId, start, end, plan)
                self._persist(session, existing, breakdown, year, month)
                session.commit()

                logger.info(f"Settled member {memberId} for {year}-{month:02d}: {breakdown.totalCommission}")
                return MemberOutcome(memberId, COMMITTED, amount=breakdown.totalCommission)

            except SQLAlchemyError as e:
                session.rollback()
                lastError = e
                logger.warning(
                    f"Settlement write for member {memberId} failed "
                    f"(attempt {attempt}/{self.writeRetries + 1}): {e}"
                )
            finally:
                session.close()

        raise SettlementWriteFailure(memberId, str(lastError))

    def _persist(self, session, existing: Optional[MonthlyPerformance], breakdown: CommissionBreakdown, year: int, month: int):
        """Stage every write of one member's settlement in the open transaction."""
        now = timeMachine.now
        self._upsertPerformance(session, existing, breakdown, year, month, now)
        rebates = self._insertRebates(session, breakdown, year, month, now)

        if breakdown.totalCommission > ZERO:
            transaction = self._creditWallet(session, breakdown.memberId, breakdown.totalCommission, year, month)
            for rebate in rebates:
                rebate.walletTransactionID = transaction.transactionID

        session.flush()

    def _upsertPerformance(self, session, existing, breakdown: CommissionBreakdown, year, month, now) -> MonthlyPerformance:
        performance = existing
        if performance is None:
            performance = MonthlyPerformance(memberID=breakdown.memberId, year=year, month=month)
            session.add(performance)

        volume = breakdown.volume
        performance.personalPV = breakdown.personalPV
        performance.leftLegPV = volume.leftLegPV if volume else ZERO
        performance.rightLegPV = volume.rightLegPV if volume else ZERO
        performance.totalGroupPV = volume.totalPV if volume else ZERO
        performance.directReferralBonus = breakdown.directReferralBonus
        performance.levelCommissions = breakdown.levelCommissions
        performance.groupVolumeBonus = breakdown.groupVolumeBonus
        performance.performanceBonus = breakdown.performanceBonus
        performance.totalEarnings = breakdown.totalCommission
        performance.settledAt = now
        return performance

    def _insertRebates(self, session, breakdown: CommissionBreakdown, year, month, now) -> List[Rebate]:
        rebates = []
        for line in breakdown.lines:
            rebate = Rebate(
                receiverID=breakdown.memberId,
                generatorID=line.generatorID,
                purchaseID=line.purchaseID,
                rebateType=line.rebateType,
                level=line.level,
                percentage=line.percentage,
                amount=line.amount,
                pvAmount=line.pvAmount,
                periodYear=year,
                periodMonth=month,
                status=RebateStatus.PROCESSED,
                processedAt=now,
            )
            session.add(rebate)
            rebates.append(rebate)

        session.flush()
        return rebates

    def _creditWallet(self, session, memberId: int, amount: Decimal, year: int, month: int) -> WalletTransaction:
        transaction = WalletTransaction(
            memberID=memberId,
            amount=amount,
            type="commission",
            status="completed",
            description=f"Commission settlement {year}-{month:02d}",
            periodYear=year,
            periodMonth=month,
        )
        session.add(transaction)

        # Increment in SQL so concurrent credits never overwrite each other
        session.query(Member).filter(Member.memberID == memberId).update(
            {Member.walletBalance: Member.walletBalance + amount},
            synchronize_session=False
        )
        session.flush()
        return transaction

    def _markCutoff(self, session, year: int, month: int, cutoffDay: int, status: str, notes: str = None):
        cutoff = session.query(MonthlyCutoff).filter_by(year=year, month=month).first()
        if not cutoff:
            cutoff = MonthlyCutoff(year=year, month=month, cutoffDay=cutoffDay)
            session.add(cutoff)

        cutoff.status = status
        if notes is not None:
            cutoff.notes = notes
        if status in (CutoffStatus.COMPLETED, CutoffStatus.FAILED):
            cutoff.processedAt = timeMachine.now
        session.commit()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def getCutoff(self, year: int, month: int) -> Optional[Dict]:
        with self.sessionFactory() as session:
            cutoff = session.query(MonthlyCutoff).filter_by(year=year, month=month).first()
            if not cutoff:
                return None
            return {
                "year": cutoff.year,
                "month": cutoff.month,
                "cutoffDay": cutoff.cutoffDay,
                "status": cutoff.status,
                "processedAt": cutoff.processedAt.isoformat() if cutoff.processedAt else None,
                "notes": cutoff.notes,
            }

    async def getMonthlyPerformance(self, memberId: int, year: int = None, month: int = None) -> List[Dict]:
        with self.sessionFactory() as session:
            query = session.query(MonthlyPerformance).filter(MonthlyPerformance.memberID == memberId)
            if year is not None:
                query = query.filter(MonthlyPerformance.year == year)
            if month is not None:
                query = query.filter(MonthlyPerformance.month == month)

            rows = query.order_by(MonthlyPerformance.year.desc(), MonthlyPerformance.month.desc()).all()
            return [performanceToDict(row) for row in rows]

    async def getTopEarners(self, year: int, month: int, limit: int = 10) -> List[Dict]:
        if limit < 1:
            raise InvalidArgument(f"Limit must be positive, got {limit}")

        with self.sessionFactory() as session:
            rows = session.query(MonthlyPerformance, Member.name).join(
                Member, Member.memberID == MonthlyPerformance.memberID
            ).filter(
                MonthlyPerformance.year == year,
                MonthlyPerformance.month == month,
                MonthlyPerformance.totalEarnings > 0,
            ).order_by(
                MonthlyPerformance.totalEarnings.desc(),
                MonthlyPerformance.memberID
            ).limit(limit).all()

            earners = []
            for performance, name in rows:
                item = performanceToDict(performance)
                item["name"] = name
                earners.append(item)
            return earners

    async def getLedgerTotals(self, year: int, month: int) -> Dict:
        """Sum of rebate amounts per type for a period."""
        with self.sessionFactory() as session:
            rows = session.query(Rebate.rebateType, func.sum(Rebate.amount)).filter(
                Rebate.periodYear == year,
                Rebate.periodMonth == month,
            ).group_by(Rebate.rebateType).all()
            return {rebateType: Decimal(str(total or 0)) for rebateType, total in rows}


def performanceToDict(row: MonthlyPerformance) -> Dict:
    return {
        "memberId": row.memberID,
        "year": row.year,
        "month": row.month,
        "personalPV": str(row.personalPV or 0),
        "leftLegPV": str(row.leftLegPV or 0),
        "rightLegPV": str(row.rightLegPV or 0),
        "totalGroupPV": str(row.totalGroupPV or 0),
        "directReferralBonus": str(row.directReferralBonus or 0),
        "levelCommissions": str(row.levelCommissions or 0),
        "groupVolumeBonus": str(row.groupVolumeBonus or 0),
        "performanceBonus": str(row.performanceBonus or 0),
        "totalEarnings": str(row.totalEarnings or 0),
        "settledAt": row.settledAt.isoformat() if row.settledAt else None,
    }
