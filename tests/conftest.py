"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
from pathlib import Path

# Тесты работают только с базой в памяти
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

# Добавить корень проекта в PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from datetime import datetime
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from init import init_tables
from models import (
    Member, Product, Purchase, SystemConfig, CommissionRate, RebateConfig, PerformanceBonusTier
)
from mlm_system.config.ranks import PurchaseStatus
from mlm_system.events.event_bus import eventBus
from mlm_system.utils.time_machine import timeMachine


@pytest.fixture
def engine():
    """Shared in-memory SQLite engine; every session sees the same database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sessionFactory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(sessionFactory):
    session = sessionFactory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def resetGlobals():
    """Event handlers and virtual time must not leak between tests."""
    eventBus.clear()
    yield
    eventBus.clear()
    timeMachine.resetToRealTime()


class Seeder:
    """Small helpers to build a network. Every call commits."""

    def __init__(self, session):
        self.session = session

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        return obj

    def member(self, memberId, uplineId=None, createdAt=datetime(2024, 1, 1), **fields):
        return self._save(Member(
            memberID=memberId,
            uplineID=uplineId,
            name=fields.pop("name", f"Member {memberId}"),
            email=fields.pop("email", f"member{memberId}@example.com"),
            createdAt=createdAt,
            **fields
        ))

    def link(self, memberId, **fields):
        """Update relation columns on an existing member."""
        member = self.session.query(Member).filter_by(memberID=memberId).one()
        for key, value in fields.items():
            setattr(member, key, value)
        self.session.commit()
        return member

    def product(self, productId, price="100", pv="100"):
        return self._save(Product(productID=productId, name=f"Product {productId}", price=Decimal(price), pv=Decimal(pv)))

    def purchase(self, memberId, productId, pv, amount=None, createdAt=datetime(2024, 3, 10),
                 status=PurchaseStatus.COMPLETED):
        amount = Decimal(str(amount if amount is not None else pv))
        return self._save(Purchase(
            memberID=memberId,
            productID=productId,
            quantity=1,
            unitAmount=amount,
            totalAmount=amount,
            totalPV=Decimal(str(pv)),
            status=status,
            createdAt=createdAt,
        ))

    def rebate(self, productId, level, percentage):
        return self._save(RebateConfig(productID=productId, level=level, percentage=Decimal(str(percentage))))

    def rate(self, type, level=None, percentage=None, fixedAmount=None, rewardType="percentage",
             tierSize="1000", createdAt=datetime(2024, 1, 1), active=True):
        return self._save(CommissionRate(
            type=type,
            level=level,
            rewardType=rewardType,
            percentage=Decimal(str(percentage)) if percentage is not None else None,
            fixedAmount=Decimal(str(fixedAmount)) if fixedAmount is not None else None,
            tierSize=Decimal(tierSize),
            createdAt=createdAt,
            active=active,
        ))

    def tier(self, name, minSales, maxSales=None, percentage="0", fixedAmount=None, bonusType="percentage"):
        return self._save(PerformanceBonusTier(
            name=name,
            minSales=Decimal(str(minSales)),
            maxSales=Decimal(str(maxSales)) if maxSales is not None else None,
            bonusType=bonusType,
            percentage=Decimal(str(percentage)),
            fixedAmount=Decimal(str(fixedAmount)) if fixedAmount is not None else None,
        ))

    def setting(self, key, value):
        return self._save(SystemConfig(key=key, value=str(value)))


@pytest.fixture
def seed(session):
    return Seeder(session)
