# models/wallet_transaction.py
"""
WalletTransaction model - every confirmed change of a member's wallet balance.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class WalletTransaction(Base, AuditMixin):
    __tablename__ = 'wallet_transactions'

    # Primary key
    transactionID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    # Transaction details
    amount = Column(DECIMAL(12, 2), nullable=False)  # Положительная или отрицательная
    type = Column(String, nullable=False)  # commission, adjustment
    status = Column(String, default='completed')
    description = Column(String, nullable=True)

    # Period the transaction settles, if any
    periodYear = Column(Integer, nullable=True)
    periodMonth = Column(Integer, nullable=True)

    # Relationships
    member = relationship('Member', backref='wallet_transactions')

    def __repr__(self):
        return f"<WalletTransaction(id={self.transactionID}, member={self.memberID}, amount={self.amount})>"
