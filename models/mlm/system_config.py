# models/mlm/system_config.py
"""
SystemConfig model - key/value plan settings (structure, PV method, cutoff day).
"""
from sqlalchemy import Column, Integer, String, Text
from models.base import Base, AuditMixin


class SystemConfig(Base, AuditMixin):
    __tablename__ = 'system_config'

    configID = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String, nullable=False, unique=True)
    value = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    def __repr__(self):
        return f"<SystemConfig({self.key}={self.value})>"
