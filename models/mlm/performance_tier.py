# models/mlm/performance_tier.py
"""
PerformanceBonusTier model - sales ranges for the optional performance bonus.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean
from models.base import Base, AuditMixin


class PerformanceBonusTier(Base, AuditMixin):
    __tablename__ = 'performance_bonus_tiers'

    tierID = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(String, nullable=False)  # Bronze, Silver, ...
    minSales = Column(DECIMAL(12, 2), nullable=False)
    maxSales = Column(DECIMAL(12, 2), nullable=True)  # null = no upper bound

    bonusType = Column(String, default='percentage')  # percentage, fixed
    percentage = Column(DECIMAL(7, 4), nullable=True)
    fixedAmount = Column(DECIMAL(12, 2), nullable=True)

    active = Column(Boolean, default=True)

    def __repr__(self):
        return f"<PerformanceBonusTier(name={self.name}, min={self.minSales}, max={self.maxSales})>"
