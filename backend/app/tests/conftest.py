from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.clock import FixedClock
from backend.app.database import Base, enable_sqlite_foreign_keys
from backend.app.orm_models import CustomerORM, ServiceORM, ServiceTaskORM
from backend.app.schemas import WorkCreate
from backend.app.services.lifecycle import create_work


def _make_session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture()
def session_factory():
    return _make_session_factory()


@pytest.fixture()
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture()
def clock():
    return FixedClock(date(2025, 11, 8))


@pytest.fixture()
def customer(session):
    record = CustomerORM(name="Acme Traders", email="accounts@acme.com")
    session.add(record)
    session.flush()
    return record


@pytest.fixture()
def service(session):
    record = ServiceORM(
        name="GST Return Filing",
        default_price=Decimal("1000.00"),
        tax_rate=Decimal("18.00"),
        income_account="4000-professional-fees",
    )
    record.tasks = [
        ServiceTaskORM(title="Collect documents", sort_order=1, due_day=10),
        ServiceTaskORM(title="File return", sort_order=2, due_offset_value=20, due_offset_unit="days"),
    ]
    session.add(record)
    session.flush()
    return record


@pytest.fixture()
def make_work(session, customer, service, clock):
    def _make(**overrides):
        payload = {
            "customerId": customer.id,
            "serviceId": service.id,
            "title": "Monthly GST",
            "isRecurring": True,
            "recurrencePattern": "monthly",
            "periodType": "current_period",
            "startDate": date(2025, 11, 8),
        }
        payload.update(overrides)
        return create_work(session, WorkCreate(**payload), clock)

    return _make
