# models/base.py
"""
Base model and mixins for all database tables.
"""
from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, DateTime
from datetime import datetime, timezone

Base = declarative_base()


def utcnow():
    # Колонки хранят naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AuditMixin:
    createdAt = Column(DateTime, default=utcnow, index=True)
    updatedAt = Column(DateTime, default=utcnow, onupdate=utcnow)
