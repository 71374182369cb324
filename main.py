import argparse
import asyncio
import json
import logging

from init import get_session, init_tables
from models import Member
from mlm_system.services.hierarchy_service import HierarchyService
from mlm_system.services.plan_service import PlanService
from mlm_system.services.rank_service import RankService
from mlm_system.services.settlement_service import SettlementService
from mlm_system.utils.time_machine import timeMachine
from csv_reports import generate_csv_report, REPORT_TYPES
import config

logger = logging.getLogger(__name__)


async def settle(session_factory, year: int, month: int) -> dict:
    service = SettlementService(session_factory)
    result = await service.settlePeriod(year, month)
    return result.toDict()


async def settle_due(session_factory) -> dict:
    """Settle the current month when today is the configured cutoff day."""
    with session_factory() as session:
        plan = await PlanService(session).loadPlan()

    if not timeMachine.isCutoffDay(plan.cutoffDay):
        logger.info(f"Cutoff for this month is day {timeMachine.cutoffDate(plan.cutoffDay)}, nothing to settle today")
        return {}

    year, month = timeMachine.currentPeriod
    return await settle(session_factory, year, month)


async def advance_ranks(session_factory) -> dict:
    with session_factory() as session:
        return await RankService(session).processAllAdvancements()


async def check_integrity(session_factory) -> dict:
    with session_factory() as session:
        return await HierarchyService(session).checkIntegrity()


def export_report(session_factory, report_type: str, member_id: int, output: str, params: dict) -> bool:
    with session_factory() as session:
        member = session.query(Member).filter_by(memberID=member_id).first()
        if not member:
            logger.error(f"Member {member_id} not found")
            return False

        report = generate_csv_report(session, member, report_type, params)
        if report is None:
            return False

    with open(output, "wb") as f:
        f.write(report.getvalue())
    logger.info(f"Wrote {REPORT_TYPES[report_type]} report to {output}")
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MLM compensation core")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables and default tiers")

    settle_parser = commands.add_parser("settle", help="Settle a period")
    settle_parser.add_argument("year", type=int)
    settle_parser.add_argument("month", type=int)

    commands.add_parser("settle-due", help="Settle the current month if today is the cutoff day")
    commands.add_parser("advance-ranks", help="Grant the next rank to every qualifying member")
    commands.add_parser("integrity", help="Report cycles in the hierarchy")

    report_parser = commands.add_parser("report", help="Export a CSV report")
    report_parser.add_argument("report_type", choices=sorted(REPORT_TYPES))
    report_parser.add_argument("member_id", type=int)
    report_parser.add_argument("output")
    report_parser.add_argument("--year", type=int)
    report_parser.add_argument("--month", type=int)
    report_parser.add_argument("--max-level", type=int)

    return parser


async def main(args) -> int:
    """Основная асинхронная функция"""
    session_factory, engine = get_session()

    try:
        if args.command == "init-db":
            init_tables(engine)
            with session_factory() as session:
                await PlanService(session).seedDefaultTiers()
            logger.info("Database initialised")
            return 0

        if args.command == "settle":
            print(json.dumps(await settle(session_factory, args.year, args.month), indent=2))
            return 0

        if args.command == "settle-due":
            print(json.dumps(await settle_due(session_factory), indent=2))
            return 0

        if args.command == "advance-ranks":
            report = await advance_ranks(session_factory)
            print(json.dumps(report, indent=2))
            return 1 if report["failed"] else 0

        if args.command == "integrity":
            report = await check_integrity(session_factory)
            print(json.dumps(report, indent=2))
            return 1 if any(report.values()) else 0

        if args.command == "report":
            params = {"year": args.year, "month": args.month, "max_level": args.max_level}
            ok = export_report(session_factory, args.report_type, args.member_id, args.output, params)
            return 0 if ok else 1

    except Exception as e:
        logger.error(f"Critical error in {args.command}: {e}")
        raise
    finally:
        engine.dispose()

    return 1


if __name__ == '__main__':
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        raise SystemExit(asyncio.run(main(build_parser().parse_args())))
    except KeyboardInterrupt:
        logger.info("Stopped.")
