# models/__init__.py
"""
Database models for the compensation core.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.member import Member
from models.product import Product
from models.purchase import Purchase
from models.rebate import Rebate
from models.wallet_transaction import WalletTransaction

# MLM models
from models.mlm.monthly_performance import MonthlyPerformance
from models.mlm.commission_rate import CommissionRate
from models.mlm.rebate_config import RebateConfig
from models.mlm.performance_tier import PerformanceBonusTier
from models.mlm.system_config import SystemConfig
from models.mlm.monthly_cutoff import MonthlyCutoff
from models.mlm.rank_advancement import RankAdvancement

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'Member',
    'Product',
    'Purchase',
    'Rebate',
    'WalletTransaction',

    # MLM
    'MonthlyPerformance',
    'CommissionRate',
    'RebateConfig',
    'PerformanceBonusTier',
    'SystemConfig',
    'MonthlyCutoff',
    'RankAdvancement',
]
