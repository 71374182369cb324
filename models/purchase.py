# models/purchase.py
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Purchase(Base, AuditMixin):
    __tablename__ = 'purchases'

    # Primary key
    purchaseID = Column(Integer, primary_key=True, autoincrement=True)

    # Foreign keys (guest purchases have no member)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)
    productID = Column(Integer, ForeignKey('products.productID'), nullable=False)

    # Purchase details
    quantity = Column(Integer, nullable=False)
    unitAmount = Column(DECIMAL(12, 2), nullable=False)
    totalAmount = Column(DECIMAL(12, 2), nullable=False)
    totalPV = Column(DECIMAL(12, 2), nullable=False, default=0)
    status = Column(String, default="pending", index=True)  # pending, completed, cancelled

    # Relationships
    member = relationship('Member', backref='purchases')
    product = relationship('Product')

    def __repr__(self):
        return f"<Purchase(purchaseID={self.purchaseID}, member={self.memberID}, pv={self.totalPV})>"
