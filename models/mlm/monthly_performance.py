# models/mlm/monthly_performance.py
"""
MonthlyPerformance model - per-member settlement snapshot for one period.
"""
from sqlalchemy import Column, Integer, DECIMAL, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class MonthlyPerformance(Base, AuditMixin):
    __tablename__ = 'monthly_performance'
    __table_args__ = (
        UniqueConstraint('memberID', 'year', 'month', name='uq_performance_member_period'),
    )

    performanceID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    # Period
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)

    # Volumes
    personalPV = Column(DECIMAL(12, 2), default=0)
    leftLegPV = Column(DECIMAL(12, 2), default=0)
    rightLegPV = Column(DECIMAL(12, 2), default=0)
    totalGroupPV = Column(DECIMAL(12, 2), default=0)

    # Earnings
    directReferralBonus = Column(DECIMAL(12, 2), default=0)
    levelCommissions = Column(DECIMAL(12, 2), default=0)
    groupVolumeBonus = Column(DECIMAL(12, 2), default=0)
    performanceBonus = Column(DECIMAL(12, 2), default=0)
    totalEarnings = Column(DECIMAL(12, 2), default=0)

    # Set once the member's settlement for this period has committed
    settledAt = Column(DateTime, nullable=True)

    # Relationships
    member = relationship('Member', backref='monthly_performance')

    @property
    def isSettled(self) -> bool:
        return self.settledAt is not None or (self.totalEarnings or 0) != 0

    def __repr__(self):
        return f"<MonthlyPerformance(member={self.memberID}, period={self.year}-{self.month:02d}, total={self.totalEarnings})>"
