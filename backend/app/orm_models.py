from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .constants import (
    InvoiceStatus,
    PeriodStatus,
    PeriodType,
    RecurrencePattern,
    TaskStatus,
    WorkStatus,
)
from .database import Base


def generate_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


MONEY = Numeric(12, 2)


class CustomerORM(Base):
    __tablename__ = "customers"

    id = Column(String, primary_key=True, default=lambda: generate_id("cust"))
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, default="")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    works = relationship("WorkORM", back_populates="customer", passive_deletes=True)


class ServiceORM(Base):
    __tablename__ = "services"

    id = Column(String, primary_key=True, default=lambda: generate_id("svc"))
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    default_price = Column(MONEY, nullable=True)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    income_account = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tasks = relationship(
        "ServiceTaskORM",
        back_populates="service",
        cascade="all, delete-orphan",
        order_by="ServiceTaskORM.sort_order",
    )


class ServiceTaskORM(Base):
    """Task template attached to a service, including its due-date rule."""

    __tablename__ = "service_tasks"

    id = Column(String, primary_key=True, default=lambda: generate_id("stask"))
    service_id = Column(String, ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    start_date = Column(Date, nullable=True)
    exact_due_date = Column(Date, nullable=True)
    due_month = Column(Integer, nullable=True)
    due_day = Column(Integer, nullable=True)
    due_weekday = Column(String, nullable=True)
    due_offset_value = Column(Integer, nullable=True)
    due_offset_unit = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    service = relationship("ServiceORM", back_populates="tasks")


class WorkORM(Base):
    __tablename__ = "works"

    id = Column(String, primary_key=True, default=lambda: generate_id("work"))
    customer_id = Column(String, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(String, ForeignKey("services.id", ondelete="SET NULL"), nullable=True, index=True)
    title = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default=WorkStatus.ACTIVE.value)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_pattern = Column(String, nullable=False, default=RecurrencePattern.NONE.value)
    period_type = Column(String, nullable=False, default=PeriodType.CURRENT_PERIOD.value)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    financial_year_start_month = Column(Integer, nullable=True)
    weekly_start_day = Column(String, nullable=False, default="monday")
    billing_amount = Column(MONEY, nullable=True)
    auto_bill = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    customer = relationship("CustomerORM", back_populates="works")
    service = relationship("ServiceORM")
    periods = relationship(
        "PeriodORM",
        back_populates="work",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PeriodORM.period_start_date",
    )
    task_configs = relationship(
        "WorkTaskConfigORM",
        back_populates="work",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    task_templates = relationship(
        "WorkTaskTemplateORM",
        back_populates="work",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkTaskTemplateORM.sort_order",
    )
    invoices = relationship("InvoiceORM", back_populates="work", cascade="all, delete-orphan", passive_deletes=True)


class WorkTaskConfigORM(Base):
    """Per-work override of a service task's due-date rule."""

    __tablename__ = "work_task_configs"
    __table_args__ = (UniqueConstraint("work_id", "service_task_id", name="uq_work_task_config"),)

    id = Column(String, primary_key=True, default=lambda: generate_id("wtc"))
    work_id = Column(String, ForeignKey("works.id", ondelete="CASCADE"), nullable=False, index=True)
    service_task_id = Column(String, ForeignKey("service_tasks.id", ondelete="CASCADE"), nullable=False)
    exact_due_date = Column(Date, nullable=True)
    due_month = Column(Integer, nullable=True)
    due_day = Column(Integer, nullable=True)
    due_weekday = Column(String, nullable=True)
    due_offset_value = Column(Integer, nullable=True)
    due_offset_unit = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    work = relationship("WorkORM", back_populates="task_configs")
    service_task = relationship("ServiceTaskORM")


class WorkTaskTemplateORM(Base):
    """Ad-hoc task defined on a single work, due relative to the period end."""

    __tablename__ = "work_task_templates"

    id = Column(String, primary_key=True, default=lambda: generate_id("wtt"))
    work_id = Column(String, ForeignKey("works.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    due_offset_value = Column(Integer, nullable=True)
    due_offset_unit = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    work = relationship("WorkORM", back_populates="task_templates")


class PeriodORM(Base):
    __tablename__ = "work_periods"
    __table_args__ = (UniqueConstraint("work_id", "period_start_date", name="uq_work_period_start"),)

    id = Column(String, primary_key=True, default=lambda: generate_id("period"))
    work_id = Column(String, ForeignKey("works.id", ondelete="CASCADE"), nullable=False, index=True)
    period_name = Column(String, nullable=False)
    period_start_date = Column(Date, nullable=False)
    period_end_date = Column(Date, nullable=False)
    status = Column(String, nullable=False, default=PeriodStatus.PENDING.value)
    total_tasks = Column(Integer, nullable=False, default=0)
    completed_tasks = Column(Integer, nullable=False, default=0)
    all_tasks_completed = Column(Boolean, nullable=False, default=False)
    is_overdue = Column(Boolean, nullable=False, default=False)
    billing_amount = Column(MONEY, nullable=True)
    is_billed = Column(Boolean, nullable=False, default=False)
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="SET NULL", use_alter=True), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    work = relationship("WorkORM", back_populates="periods")
    tasks = relationship(
        "PeriodTaskORM",
        back_populates="period",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PeriodTaskORM.sort_order",
    )
    invoice = relationship("InvoiceORM", foreign_keys=[invoice_id], post_update=True)


class PeriodTaskORM(Base):
    __tablename__ = "period_tasks"
    __table_args__ = (
        UniqueConstraint("period_id", "service_task_id", name="uq_period_service_task"),
        UniqueConstraint("period_id", "work_task_template_id", name="uq_period_work_task_template"),
    )

    id = Column(String, primary_key=True, default=lambda: generate_id("ptask"))
    period_id = Column(String, ForeignKey("work_periods.id", ondelete="CASCADE"), nullable=False, index=True)
    service_task_id = Column(String, ForeignKey("service_tasks.id", ondelete="SET NULL"), nullable=True)
    work_task_template_id = Column(String, ForeignKey("work_task_templates.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    due_date = Column(Date, nullable=True)
    status = Column(String, nullable=False, default=TaskStatus.PENDING.value)
    sort_order = Column(Integer, nullable=False, default=0)
    is_overdue = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    period = relationship("PeriodORM", back_populates="tasks")


class InvoiceORM(Base):
    __tablename__ = "invoices"

    id = Column(String, primary_key=True, default=lambda: generate_id("inv"))
    invoice_number = Column(String, nullable=False, unique=True)
    customer_id = Column(String, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    work_id = Column(String, ForeignKey("works.id", ondelete="CASCADE"), nullable=True, index=True)
    period_id = Column(String, ForeignKey("work_periods.id", ondelete="SET NULL"), nullable=True, index=True)
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    subtotal = Column(MONEY, nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Column(MONEY, nullable=False, default=0)
    total_amount = Column(MONEY, nullable=False, default=0)
    status = Column(String, nullable=False, default=InvoiceStatus.DRAFT.value)
    notes = Column(Text, nullable=True)
    income_account = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    work = relationship("WorkORM", back_populates="invoices")
    items = relationship("InvoiceItemORM", back_populates="invoice", cascade="all, delete-orphan", passive_deletes=True)


class InvoiceItemORM(Base):
    __tablename__ = "invoice_items"

    id = Column(String, primary_key=True, default=lambda: generate_id("item"))
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(String, ForeignKey("services.id", ondelete="SET NULL"), nullable=True)
    description = Column(String, nullable=False)
    quantity = Column(Numeric(10, 2), nullable=False, default=1)
    unit_price = Column(MONEY, nullable=False, default=0)
    amount = Column(MONEY, nullable=False, default=0)

    invoice = relationship("InvoiceORM", back_populates="items")
