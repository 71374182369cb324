# models/rebate.py
"""
Rebate model - append-only ledger of every settled commission line.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Rebate(Base, AuditMixin):
    __tablename__ = 'rebates'

    # Primary key
    rebateID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    receiverID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    generatorID = Column(Integer, ForeignKey('members.memberID'), nullable=True)  # null for group volume / performance
    purchaseID = Column(Integer, ForeignKey('purchases.purchaseID'), nullable=True)
    walletTransactionID = Column(Integer, ForeignKey('wallet_transactions.transactionID'), nullable=True)

    # Commission details
    rebateType = Column(String, nullable=False)  # direct_referral, level_commission, group_volume, performance_bonus
    level = Column(Integer, nullable=True)
    percentage = Column(DECIMAL(7, 4), nullable=True)
    amount = Column(DECIMAL(12, 2), nullable=False)
    pvAmount = Column(DECIMAL(12, 2), nullable=True)

    # Period
    periodYear = Column(Integer, nullable=False)
    periodMonth = Column(Integer, nullable=False)

    # Status
    status = Column(String, default="pending")  # pending, processed
    processedAt = Column(DateTime, nullable=True)

    # Relationships
    receiver = relationship('Member', foreign_keys=[receiverID], backref='rebates_received')
    generator = relationship('Member', foreign_keys=[generatorID], backref='rebates_generated')
    purchase = relationship('Purchase', backref='rebates')

    def __repr__(self):
        return f"<Rebate(rebateID={self.rebateID}, receiver={self.receiverID}, amount={self.amount})>"
