from sqlalchemy import Column, Integer, String, Boolean, DECIMAL
from models.base import Base


class Product(Base):
    __tablename__ = 'products'

    productID = Column(Integer, primary_key=True)
    name = Column(String)
    price = Column(DECIMAL(12, 2), nullable=False, default=0)
    pv = Column(DECIMAL(12, 2), nullable=False, default=0)
    isActive = Column(Boolean, default=True)
