# models/mlm/monthly_cutoff.py
"""
MonthlyCutoff model - operator-facing record of a settlement run.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, UniqueConstraint
from models.base import Base, AuditMixin


class MonthlyCutoff(Base, AuditMixin):
    __tablename__ = 'monthly_cutoffs'
    __table_args__ = (
        UniqueConstraint('year', 'month', name='uq_cutoff_period'),
    )

    cutoffID = Column(Integer, primary_key=True, autoincrement=True)

    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    cutoffDay = Column(Integer, nullable=False)

    # Status
    status = Column(String, default='pending')  # pending, processing, completed, failed
    processedAt = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    def __repr__(self):
        return f"<MonthlyCutoff({self.year}-{self.month:02d}, status={self.status})>"
