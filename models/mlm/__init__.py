# models/mlm/__init__.py
"""
Compensation plan configuration and settlement snapshots.
"""

from models.mlm.monthly_performance import MonthlyPerformance
from models.mlm.commission_rate import CommissionRate
from models.mlm.rebate_config import RebateConfig
from models.mlm.performance_tier import PerformanceBonusTier
from models.mlm.system_config import SystemConfig
from models.mlm.monthly_cutoff import MonthlyCutoff
from models.mlm.rank_advancement import RankAdvancement

__all__ = [
    'MonthlyPerformance',
    'CommissionRate',
    'RebateConfig',
    'PerformanceBonusTier',
    'SystemConfig',
    'MonthlyCutoff',
    'RankAdvancement',
]
