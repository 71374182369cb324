# mlm_system/__init__.py
"""
MLM System - compensation engine and hierarchy query service.
"""

# Services
from mlm_system.services.hierarchy_service import HierarchyService
from mlm_system.services.plan_service import PlanService, CompensationPlan
from mlm_system.services.purchase_service import PurchaseService
from mlm_system.services.volume_service import VolumeService, VolumeCache, DownlineVolume
from mlm_system.services.commission_service import CommissionService, CommissionBreakdown
from mlm_system.services.settlement_service import SettlementService, SettlementResult
from mlm_system.services.genealogy_service import HierarchyQueryService
from mlm_system.services.rank_service import RankService, RankEligibility

# Configuration
from mlm_system.config.ranks import Rank, RANK_CONFIG, Structure, CommissionType, RewardType

# Errors
from mlm_system.errors import (
    MLMError, InvalidArgument, InvalidRange, Unauthorized, MemberNotFound, ProductNotFound,
    CorruptHierarchy, ConfigurationConflict, SettlementWriteFailure, RateLimitExceeded
)

# Utilities
from mlm_system.utils.time_machine import timeMachine, periodWindow
from mlm_system.utils.rate_limiter import RateLimiter
from mlm_system.utils.response_cache import ResponseCache

# Events
from mlm_system.events.event_bus import eventBus, MLMEvents

__all__ = [
    # Services
    'HierarchyService',
    'PlanService',
    'CompensationPlan',
    'PurchaseService',
    'VolumeService',
    'VolumeCache',
    'DownlineVolume',
    'CommissionService',
    'CommissionBreakdown',
    'SettlementService',
    'SettlementResult',
    'HierarchyQueryService',
    'RankService',
    'RankEligibility',

    # Config
    'Rank',
    'RANK_CONFIG',
    'Structure',
    'CommissionType',
    'RewardType',

    # Errors
    'MLMError',
    'InvalidArgument',
    'InvalidRange',
    'Unauthorized',
    'MemberNotFound',
    'ProductNotFound',
    'CorruptHierarchy',
    'ConfigurationConflict',
    'SettlementWriteFailure',
    'RateLimitExceeded',

    # Utils
    'timeMachine',
    'periodWindow',
    'RateLimiter',
    'ResponseCache',

    # Events
    'eventBus',
    'MLMEvents',
]
