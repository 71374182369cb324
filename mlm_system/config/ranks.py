# mlm_system/config/ranks.py
"""
MLM ranks, plan vocabulary and constants.
"""
from enum import Enum, IntEnum
from decimal import Decimal


class Rank(IntEnum):
    STARTER = 1
    BRONZE = 2
    SILVER = 3
    GOLD = 4
    PLATINUM = 5
    DIAMOND = 6


RANK_CONFIG = {
    Rank.STARTER: {
        "displayName": "Starter",
        "personalSalesRequired": Decimal("0"),
        "groupSalesRequired": Decimal("0"),
        "directDownlineRequired": 0,
        "qualifiedDownlineRequired": 0,
        "qualifiedRank": None,
    },
    Rank.BRONZE: {
        "displayName": "Bronze",
        "personalSalesRequired": Decimal("1000"),
        "groupSalesRequired": Decimal("5000"),
        "directDownlineRequired": 2,
        "qualifiedDownlineRequired": 0,
        "qualifiedRank": None,
    },
    Rank.SILVER: {
        "displayName": "Silver",
        "personalSalesRequired": Decimal("2000"),
        "groupSalesRequired": Decimal("15000"),
        "directDownlineRequired": 5,
        "qualifiedDownlineRequired": 2,
        "qualifiedRank": Rank.BRONZE,
    },
    Rank.GOLD: {
        "displayName": "Gold",
        "personalSalesRequired": Decimal("3000"),
        "groupSalesRequired": Decimal("50000"),
        "directDownlineRequired": 10,
        "qualifiedDownlineRequired": 3,
        "qualifiedRank": Rank.SILVER,
    },
    Rank.PLATINUM: {
        "displayName": "Platinum",
        "personalSalesRequired": Decimal("5000"),
        "groupSalesRequired": Decimal("150000"),
        "directDownlineRequired": 15,
        "qualifiedDownlineRequired": 5,
        "qualifiedRank": Rank.GOLD,
    },
    Rank.DIAMOND: {
        "displayName": "Diamond",
        "personalSalesRequired": Decimal("10000"),
        "groupSalesRequired": Decimal("500000"),
        "directDownlineRequired": 20,
        "qualifiedDownlineRequired": 5,
        "qualifiedRank": Rank.PLATINUM,
    },
}


class RankMethod:
    NATURAL = "natural"  # по результатам продаж
    ASSIGNED = "assigned"


class Structure(str, Enum):
    BINARY = "binary"
    UNILEVEL = "unilevel"


class PvCalculation(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class CommissionType(str, Enum):
    DIRECT_REFERRAL = "direct_referral"
    LEVEL_COMMISSION = "level_commission"
    GROUP_VOLUME = "group_volume"
    PERFORMANCE_BONUS = "performance_bonus"


class RewardType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PurchaseStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RebateStatus:
    PENDING = "pending"
    PROCESSED = "processed"


class CutoffStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Constants
DEFAULT_TIER_SIZE = Decimal("1000")  # PV per tier for fixed group volume
ACTIVITY_WINDOW_DAYS = 30  # "active" member window for statistics
ACTIVITY_SCORE_WINDOW_DAYS = 90
ACTIVITY_SCORE_PURCHASE_WEIGHT = 10
ACTIVITY_SCORE_REFERRAL_WEIGHT = 20
ACTIVITY_SCORE_MAX = 100

# Default performance tiers, seeded when the tier table is empty
DEFAULT_PERFORMANCE_TIERS = [
    {"name": "Bronze", "minSales": Decimal("1000"), "maxSales": Decimal("2999.99"), "percentage": Decimal("2")},
    {"name": "Silver", "minSales": Decimal("3000"), "maxSales": Decimal("5999.99"), "percentage": Decimal("3")},
    {"name": "Gold", "minSales": Decimal("6000"), "maxSales": Decimal("9999.99"), "percentage": Decimal("5")},
    {"name": "Platinum", "minSales": Decimal("10000"), "maxSales": None, "percentage": Decimal("7")},
]

COMPARE_TIME_RANGES = {
    "last30days": 30,
    "last90days": 90,
    "last6months": 182,
    "last12months": 365,
}
