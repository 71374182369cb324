# mlm_system/services/plan_service.py
"""
Compensation plan loader.

Reads SystemConfig, CommissionRate, RebateConfig and PerformanceBonusTier into one
immutable snapshot. Ambiguous configuration is resolved or rejected here, at load
time, so calculation code never has to.
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Tuple, List
from sqlalchemy.orm import Session
import logging

import config
from models import SystemConfig, CommissionRate, RebateConfig, PerformanceBonusTier
from mlm_system.config.ranks import (
    Structure, PvCalculation, CommissionType, RewardType, DEFAULT_TIER_SIZE, DEFAULT_PERFORMANCE_TIERS
)
from mlm_system.errors import ConfigurationConflict, InvalidArgument
from mlm_system.events.event_bus import eventBus, MLMEvents

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class RateEntry:
    type: str
    level: Optional[int]
    rewardType: str
    percentage: Decimal
    fixedAmount: Decimal
    tierSize: Decimal
    rateID: Optional[int] = None


@dataclass(frozen=True)
class TierEntry:
    name: str
    minSales: Decimal
    maxSales: Optional[Decimal]
    bonusType: str
    percentage: Decimal
    fixedAmount: Decimal

    def contains(self, sales: Decimal) -> bool:
        if sales < self.minSales:
            return False
        return self.maxSales is None or sales <= self.maxSales


@dataclass(frozen=True)
class CompensationPlan:
    structure: str = Structure.BINARY.value
    pvCalculation: str = PvCalculation.PERCENTAGE.value
    pvPercentage: Decimal = Decimal("50")
    performanceBonusEnabled: bool = False
    cutoffDay: int = 25
    binaryMaxDepth: int = 6
    unilevelMaxDepth: int = 6
    rates: Dict[Tuple[str, Optional[int]], RateEntry] = field(default_factory=dict)
    rebatePercentages: Dict[int, Dict[int, Decimal]] = field(default_factory=dict)
    tiers: Tuple[TierEntry, ...] = ()

    @property
    def isBinary(self) -> bool:
        return self.structure == Structure.BINARY.value

    def rate(self, commissionType: str, level: Optional[int] = None) -> Optional[RateEntry]:
        return self.rates.get((commissionType, level))

    def levelPercentages(self, productId: int) -> Dict[int, Decimal]:
        """
        Level -> percentage for a product. Products without any RebateConfig rows
        fall back to the level_commission rates.
        """
        if productId in self.rebatePercentages:
            return self.rebatePercentages[productId]

        return {
            level: entry.percentage
            for (rateType, level), entry in self.rates.items()
            if rateType == CommissionType.LEVEL_COMMISSION.value and level is not None
            and entry.rewardType == RewardType.PERCENTAGE.value
        }

    @property
    def maxLevel(self) -> int:
        levels = [level for table in self.rebatePercentages.values() for level in table]
        levels += [
            level for (rateType, level) in self.rates
            if rateType == CommissionType.LEVEL_COMMISSION.value and level is not None
        ]
        return max(levels, default=0)

    def tierFor(self, sales: Decimal) -> Optional[TierEntry]:
        for tier in self.tiers:
            if tier.contains(sales):
                return tier
        return None


def _decimal(value, default=ZERO) -> Decimal:
    if value is None:
        return default
    return Decimal(str(value))


def _parseBool(value: str) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class PlanService:
    """Loads and updates the compensation plan configuration."""

    def __init__(self, session: Session):
        self.session = session

    def _settings(self) -> Dict[str, str]:
        values = dict(config.PLAN_DEFAULTS)
        for row in self.session.query(SystemConfig).all():
            values[row.key] = row.value
        return values

    async def getSetting(self, key: str) -> str:
        return self._settings().get(key)

    async def getStructure(self) -> str:
        """Current structure, read fresh on every call."""
        structure = self._settings()["mlm_structure"]
        if structure not in (Structure.BINARY.value, Structure.UNILEVEL.value):
            raise ConfigurationConflict(f"Unknown mlm_structure: {structure}")
        return structure

    async def loadPlan(self) -> CompensationPlan:
        """Build a validated plan snapshot. Raises ConfigurationConflict on bad config."""
        settings = self._settings()

        structure = settings["mlm_structure"]
        if structure not in (Structure.BINARY.value, Structure.UNILEVEL.value):
            raise ConfigurationConflict(f"Unknown mlm_structure: {structure}")

        pvCalculation = settings["pv_calculation"]
        if pvCalculation not in (PvCalculation.FIXED.value, PvCalculation.PERCENTAGE.value):
            raise ConfigurationConflict(f"Unknown pv_calculation: {pvCalculation}")

        try:
            pvPercentage = Decimal(str(settings["pv_percentage"]))
            cutoffDay = int(settings["monthly_cutoff_day"])
            binaryMaxDepth = int(settings["binary_max_depth"])
            unilevelMaxDepth = int(settings["unilevel_max_depth"])
        except (ValueError, InvalidOperation) as e:
            raise ConfigurationConflict(f"Malformed plan setting: {e}")

        if not 1 <= cutoffDay <= 31:
            raise ConfigurationConflict(f"monthly_cutoff_day out of range: {cutoffDay}")

        plan = CompensationPlan(
            structure=structure,
            pvCalculation=pvCalculation,
            pvPercentage=pvPercentage,
            performanceBonusEnabled=_parseBool(settings["performance_bonus_enabled"]),
            cutoffDay=cutoffDay,
            binaryMaxDepth=binaryMaxDepth,
            unilevelMaxDepth=unilevelMaxDepth,
            rates=self._loadRates(),
            rebatePercentages=self._loadRebateTable(),
            tiers=self._loadTiers(),
        )

        logger.debug(
            f"Loaded plan: structure={plan.structure}, {len(plan.rates)} rates, "
            f"{len(plan.rebatePercentages)} rebate products, {len(plan.tiers)} tiers"
        )
        return plan

    def _loadRates(self) -> Dict[Tuple[str, Optional[int]], RateEntry]:
        rows = self.session.query(CommissionRate).filter(
            CommissionRate.active == True  # noqa: E712
        ).order_by(
            CommissionRate.createdAt.desc(),
            CommissionRate.rateID.desc()
        ).all()

        rates = {}
        for row in rows:
            key = (row.type, row.level)
            if key in rates:
                # Most recently created active row wins
                logger.warning(
                    f"Duplicate active commission rate for type={row.type} level={row.level}: "
                    f"using rate {rates[key].rateID}, ignoring rate {row.rateID}"
                )
                continue

            rates[key] = RateEntry(
                type=row.type,
                level=row.level,
                rewardType=row.rewardType or RewardType.PERCENTAGE.value,
                percentage=_decimal(row.percentage),
                fixedAmount=_decimal(row.fixedAmount),
                tierSize=_decimal(row.tierSize, DEFAULT_TIER_SIZE),
                rateID=row.rateID,
            )
        return rates

    def _loadRebateTable(self) -> Dict[int, Dict[int, Decimal]]:
        table: Dict[int, Dict[int, Decimal]] = {}
        for row in self.session.query(RebateConfig).all():
            if row.level < 1:
                raise ConfigurationConflict(
                    f"Rebate level must be >= 1 (product {row.productID}, level {row.level})"
                )
            table.setdefault(row.productID, {})[row.level] = _decimal(row.percentage)
        return table

    def _loadTiers(self) -> Tuple[TierEntry, ...]:
        rows = self.session.query(PerformanceBonusTier).filter(
            PerformanceBonusTier.active == True  # noqa: E712
        ).order_by(PerformanceBonusTier.minSales).all()

        tiers = [
            TierEntry(
                name=row.name,
                minSales=_decimal(row.minSales),
                maxSales=_decimal(row.maxSales, None),
                bonusType=row.bonusType or RewardType.PERCENTAGE.value,
                percentage=_decimal(row.percentage),
                fixedAmount=_decimal(row.fixedAmount),
            )
            for row in rows
        ]
        validateTiers(tiers)
        return tuple(tiers)

    async def updateSettings(self, **values) -> Dict[str, str]:
        """Upsert plan settings. Unknown keys are rejected."""
        unknown = set(values) - set(config.PLAN_DEFAULTS)
        if unknown:
            raise InvalidArgument(f"Unknown plan settings: {', '.join(sorted(unknown))}")

        for key, value in values.items():
            if isinstance(value, bool):
                value = "true" if value else "false"

            row = self.session.query(SystemConfig).filter_by(key=key).first()
            if row:
                row.value = str(value)
            else:
                self.session.add(SystemConfig(key=key, value=str(value)))

        self.session.commit()
        logger.info(f"Plan settings updated: {values}")

        await eventBus.emit(MLMEvents.PLAN_UPDATED, {"settings": {k: str(v) for k, v in values.items()}})
        return self._settings()

    async def changeStructure(self, structure: str):
        if structure not in (Structure.BINARY.value, Structure.UNILEVEL.value):
            raise InvalidArgument(f"Unknown structure: {structure}")
        await self.updateSettings(mlm_structure=structure)

    async def seedDefaultTiers(self) -> int:
        """Create the default performance tiers when none exist."""
        if self.session.query(PerformanceBonusTier).count():
            return 0

        for tier in DEFAULT_PERFORMANCE_TIERS:
            self.session.add(PerformanceBonusTier(
                name=tier["name"],
                minSales=tier["minSales"],
                maxSales=tier["maxSales"],
                bonusType=RewardType.PERCENTAGE.value,
                percentage=tier["percentage"],
            ))
        self.session.commit()
        logger.info(f"Seeded {len(DEFAULT_PERFORMANCE_TIERS)} default performance tiers")
        return len(DEFAULT_PERFORMANCE_TIERS)


def validateTiers(tiers: List[TierEntry]):
    """Raise ConfigurationConflict when any two tier ranges share a sales value."""
    ordered = sorted(tiers, key=lambda t: t.minSales)
    for tier in ordered:
        if tier.maxSales is not None and tier.maxSales < tier.minSales:
            raise ConfigurationConflict(f"Tier {tier.name} has maxSales below minSales")

    for previous, current in zip(ordered, ordered[1:]):
        if previous.maxSales is None or previous.maxSales >= current.minSales:
            raise ConfigurationConflict(
                f"Performance tiers {previous.name} and {current.name} overlap"
            )
