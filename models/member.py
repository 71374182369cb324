# models/member.py
"""
Member model - a node in both the unilevel (upline) and binary (left/right) hierarchies.
"""
from sqlalchemy import Column, Integer, String, Boolean, DECIMAL, JSON, ForeignKey
from models.base import Base, AuditMixin


class Member(Base, AuditMixin):
    __tablename__ = 'members'

    # Primary key
    memberID = Column(Integer, primary_key=True, autoincrement=True)

    # Identity
    name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)

    # Unilevel relation
    uplineID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)
    sponsorID = Column(Integer, ForeignKey('members.memberID'), nullable=True)

    # Binary relation, independent of upline
    leftLegID = Column(Integer, ForeignKey('members.memberID'), nullable=True)
    rightLegID = Column(Integer, ForeignKey('members.memberID'), nullable=True)
    placementPosition = Column(String, nullable=True)  # left, right

    # Compensation state
    rank = Column(Integer, default=1, nullable=False)
    walletBalance = Column(DECIMAL(12, 2), default=0, nullable=False)
    isActive = Column(Boolean, default=True, nullable=False)

    # Explicit claims such as {"admin": true}
    capabilities = Column(JSON, nullable=True)

    # Note: createdAt, updatedAt - от AuditMixin

    def hasCapability(self, name: str) -> bool:
        return bool((self.capabilities or {}).get(name))

    def __repr__(self):
        return f"<Member(memberID={self.memberID}, upline={self.uplineID}, rank={self.rank})>"
