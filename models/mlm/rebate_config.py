# models/mlm/rebate_config.py
"""
RebateConfig model - per-product, per-level commission percentage.
"""
from sqlalchemy import Column, Integer, DECIMAL, ForeignKey, UniqueConstraint
from models.base import Base, AuditMixin


class RebateConfig(Base, AuditMixin):
    __tablename__ = 'rebate_configs'
    __table_args__ = (
        UniqueConstraint('productID', 'level', name='uq_rebate_product_level'),
    )

    configID = Column(Integer, primary_key=True, autoincrement=True)

    productID = Column(Integer, ForeignKey('products.productID'), nullable=False, index=True)
    level = Column(Integer, nullable=False)  # 1 = immediate upline of the purchaser
    percentage = Column(DECIMAL(7, 4), nullable=False)

    def __repr__(self):
        return f"<RebateConfig(product={self.productID}, level={self.level}, pct={self.percentage})>"
