import os
from decimal import Decimal
from dotenv import load_dotenv

# Загрузка .env
load_dotenv()

# База данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///mlm.db")

# Логирование
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Settlement
SETTLEMENT_MAX_WORKERS = int(os.getenv("SETTLEMENT_MAX_WORKERS", "4"))
SETTLEMENT_WRITE_RETRIES = int(os.getenv("SETTLEMENT_WRITE_RETRIES", "2"))

# Rate limiting for genealogy reads
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_CLEANUP_SECONDS = int(os.getenv("RATE_LIMIT_CLEANUP_SECONDS", "3600"))

# Response cache
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "300"))
CACHE_CLEANUP_SECONDS = int(os.getenv("CACHE_CLEANUP_SECONDS", "600"))

# Genealogy
MAX_GENEALOGY_DEPTH = int(os.getenv("MAX_GENEALOGY_DEPTH", "10"))
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20

# Plan defaults, used when the system_config table has no value for a key
PLAN_DEFAULTS = {
    "mlm_structure": os.getenv("MLM_STRUCTURE", "binary"),
    "pv_calculation": os.getenv("PV_CALCULATION", "percentage"),
    "pv_percentage": os.getenv("PV_PERCENTAGE", "50"),
    "performance_bonus_enabled": os.getenv("PERFORMANCE_BONUS_ENABLED", "false"),
    "monthly_cutoff_day": os.getenv("MONTHLY_CUTOFF_DAY", "25"),
    "binary_max_depth": os.getenv("BINARY_MAX_DEPTH", "6"),
    "unilevel_max_depth": os.getenv("UNILEVEL_MAX_DEPTH", "6"),
}

# Money precision
MONEY_QUANT = Decimal("0.01")
