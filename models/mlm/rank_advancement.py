# models/mlm/rank_advancement.py
"""
RankAdvancement model - every rank change with the figures it was granted on.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class RankAdvancement(Base, AuditMixin):
    __tablename__ = 'rank_advancements'

    advancementID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    # Rank change
    previousRank = Column(Integer, nullable=False)
    newRank = Column(Integer, nullable=False)
    method = Column(String, nullable=False, default='natural')  # natural, assigned
    assignedBy = Column(Integer, ForeignKey('members.memberID'), nullable=True)

    # Qualification snapshot
    personalSales = Column(DECIMAL(12, 2), nullable=False, default=0)
    groupSales = Column(DECIMAL(12, 2), nullable=False, default=0)
    directDownlineCount = Column(Integer, nullable=False, default=0)
    qualifiedDownlineCount = Column(Integer, nullable=False, default=0)

    # Relationships
    member = relationship('Member', foreign_keys=[memberID], backref='rank_advancements')

    def __repr__(self):
        return f"<RankAdvancement(member={self.memberID}, {self.previousRank} -> {self.newRank})>"
