import io
import csv
import logging
from typing import List, Dict, Any, Optional, Tuple
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Member, Rebate, MonthlyPerformance
from mlm_system.errors import MLMError, InvalidArgument
from mlm_system.services.hierarchy_service import walkDownline

logger = logging.getLogger(__name__)

# Dictionary mapping report types to information about the report
REPORTS = {
    "settlement_summary": {
        "name": "Settlement Summary",
        "generator": lambda s, m, p: settlement_summary_report(s, m, p)
    },
    "rebate_ledger": {
        "name": "Rebate Ledger",
        "generator": lambda s, m, p: rebate_ledger_report(s, m, p)
    },
    "genealogy": {
        "name": "Genealogy",
        "generator": lambda s, m, p: genealogy_report(s, m, p)
    }
}

REPORT_TYPES = {key: info["name"] for key, info in REPORTS.items()}


def _date(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


def generate_csv_report(
        session: Session,
        member: Member,
        report_type: str,
        params: Dict[str, Any] = None
) -> Optional[io.BytesIO]:
    """
    Generates a CSV report based on report type and parameters

    Args:
        session: Database session
        member: Member the report is about
        report_type: Type of report (one of REPORTS keys)
        params: Additional parameters for report customization

    Returns:
        BytesIO object containing CSV data or None if report generation failed
    """
    if report_type not in REPORTS:
        logger.error(f"Unknown report type: {report_type}")
        return None

    try:
        if params is None:
            params = {}

        report_generator = REPORTS[report_type]["generator"]
        headers, data = report_generator(session, member, params)

        # Semicolon delimiter for Excel compatibility
        string_output = io.StringIO()
        writer = csv.writer(string_output, delimiter=';')
        writer.writerow(headers)
        for row in data:
            writer.writerow(row)

        # BOM for Excel compatibility
        output = io.BytesIO(string_output.getvalue().encode('utf-8-sig'))
        output.seek(0)
        return output

    except (SQLAlchemyError, MLMError) as e:
        logger.error(f"Error generating {report_type} report: {e}", exc_info=True)
        return None


def settlement_summary_report(session: Session, member: Member, params: Dict[str, Any]) -> Tuple[List[str], List[List[Any]]]:
    """
    Settled MonthlyPerformance rows for a period, highest earners first.

    Params:
        year, month: period to export (required)
    """
    headers = [
        "Member ID", "Name", "Personal PV", "Left Leg PV", "Right Leg PV", "Group PV",
        "Direct Referral", "Level Commissions", "Group Volume", "Performance Bonus",
        "Total Earnings", "Settled At"
    ]

    if params.get("year") is None or params.get("month") is None:
        raise InvalidArgument("Settlement summary needs both year and month")

    rows = session.query(MonthlyPerformance, Member.name).join(
        Member, Member.memberID == MonthlyPerformance.memberID
    ).filter(
        MonthlyPerformance.year == params["year"],
        MonthlyPerformance.month == params["month"],
    ).order_by(
        MonthlyPerformance.totalEarnings.desc(),
        MonthlyPerformance.memberID
    ).all()

    data = []
    for performance, name in rows:
        data.append([
            performance.memberID,
            name or "",
            performance.personalPV,
            performance.leftLegPV,
            performance.rightLegPV,
            performance.totalGroupPV,
            performance.directReferralBonus,
            performance.levelCommissions,
            performance.groupVolumeBonus,
            performance.performanceBonus,
            performance.totalEarnings,
            _date(performance.settledAt),
        ])

    return headers, data


def rebate_ledger_report(session: Session, member: Member, params: Dict[str, Any]) -> Tuple[List[str], List[List[Any]]]:
    """Every rebate received by the member, newest first. Optional year/month narrow the period."""
    headers = [
        "Rebate ID", "Processed", "Type", "Level", "Generator ID", "Purchase ID",
        "PV", "Percentage", "Amount", "Status", "Wallet Transaction"
    ]

    query = session.query(Rebate).filter(Rebate.receiverID == member.memberID)
    if params.get("year") is not None:
        query = query.filter(Rebate.periodYear == params["year"])
    if params.get("month") is not None:
        query = query.filter(Rebate.periodMonth == params["month"])

    data = []
    for rebate in query.order_by(Rebate.processedAt.desc(), Rebate.rebateID.desc()).all():
        data.append([
            rebate.rebateID,
            _date(rebate.processedAt),
            rebate.rebateType,
            rebate.level if rebate.level is not None else "",
            rebate.generatorID if rebate.generatorID is not None else "",
            rebate.purchaseID if rebate.purchaseID is not None else "",
            rebate.pvAmount if rebate.pvAmount is not None else "",
            rebate.percentage if rebate.percentage is not None else "",
            rebate.amount,
            rebate.status,
            rebate.walletTransactionID or "",
        ])

    return headers, data


def genealogy_report(session: Session, member: Member, params: Dict[str, Any]) -> Tuple[List[str], List[List[Any]]]:
    """
    The member's downline over the upline relation, level by level.

    Params:
        max_level: deepest level to include (default: all)
    """
    headers = ["Level", "Member ID", "Name", "Email", "Upline ID", "Rank", "Active", "Joined", "Wallet Balance"]

    levels = walkDownline(session, member.memberID, params.get("max_level"))
    ids = [memberId for level_ids in levels.values() for memberId in level_ids]
    members = {
        row.memberID: row
        for row in session.query(Member).filter(Member.memberID.in_(ids)).all()
    } if ids else {}

    data = []
    for level in sorted(levels):
        for memberId in levels[level]:
            row = members[memberId]
            data.append([
                level,
                row.memberID,
                row.name or "",
                row.email or "",
                row.uplineID,
                row.rank,
                "yes" if row.isActive else "no",
                _date(row.createdAt),
                row.walletBalance,
            ])

    return headers, data
