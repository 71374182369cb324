# models/mlm/commission_rate.py
"""
CommissionRate model - typed rate entries keyed by (type, level).
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime
from models.base import Base, utcnow


class CommissionRate(Base):
    __tablename__ = 'commission_rates'

    rateID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=utcnow)

    # Key. Several active rows per key may exist; the newest one is honored.
    type = Column(String, nullable=False, index=True)  # direct_referral, level_commission, group_volume, performance_bonus
    level = Column(Integer, nullable=True)

    # Value
    rewardType = Column(String, default='percentage')  # percentage, fixed
    percentage = Column(DECIMAL(7, 4), nullable=True)
    fixedAmount = Column(DECIMAL(12, 2), nullable=True)
    tierSize = Column(DECIMAL(12, 2), default=1000)  # PV per tier for fixed group volume

    active = Column(Boolean, default=True)

    def __repr__(self):
        return f"<CommissionRate(type={self.type}, level={self.level}, {self.rewardType})>"
