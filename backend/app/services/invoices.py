from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import orm_models
from ..config import Settings, settings
from ..constants import InvoiceStatus


@dataclass
class InvoiceLine:
    description: str
    unit_price: Decimal
    quantity: Decimal = Decimal("1")
    service_id: Optional[str] = None

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class InvoiceDraft:
    customer_id: str
    invoice_date: date
    due_date: date
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    work_id: Optional[str] = None
    period_id: Optional[str] = None
    notes: Optional[str] = None
    income_account: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    lines: list[InvoiceLine] = field(default_factory=list)


def format_invoice_number(number: int, config: Settings = settings) -> str:
    digits = str(number)
    if config.invoice_zero_pad:
        digits = digits.zfill(config.invoice_number_width)
    return f"{config.invoice_prefix}{digits}{config.invoice_suffix}"


def next_invoice_number(session: Session, config: Settings = settings) -> str:
    pattern = re.compile(rf"^{re.escape(config.invoice_prefix)}(\d+){re.escape(config.invoice_suffix)}$")
    highest = config.invoice_starting_number - 1
    for number in session.execute(select(orm_models.InvoiceORM.invoice_number)).scalars():
        match = pattern.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return format_invoice_number(highest + 1, config)


def create_invoice(session: Session, draft: InvoiceDraft, config: Settings = settings) -> orm_models.InvoiceORM:
    invoice = orm_models.InvoiceORM(
        invoice_number=next_invoice_number(session, config),
        customer_id=draft.customer_id,
        work_id=draft.work_id,
        period_id=draft.period_id,
        invoice_date=draft.invoice_date,
        due_date=draft.due_date,
        subtotal=draft.subtotal,
        tax_rate=draft.tax_rate,
        tax_amount=draft.tax_amount,
        total_amount=draft.total_amount,
        status=draft.status.value,
        notes=draft.notes,
        income_account=draft.income_account,
    )
    invoice.items = [
        orm_models.InvoiceItemORM(
            service_id=line.service_id,
            description=line.description,
            quantity=line.quantity,
            unit_price=line.unit_price,
            amount=line.amount,
        )
        for line in draft.lines
    ]
    session.add(invoice)
    session.flush()
    return invoice


def get_invoice(session: Session, invoice_id: str) -> Optional[orm_models.InvoiceORM]:
    return session.get(orm_models.InvoiceORM, invoice_id)


def find_live_invoice_for_period(session: Session, period_id: str) -> Optional[orm_models.InvoiceORM]:
    return (
        session.execute(
            select(orm_models.InvoiceORM)
            .where(orm_models.InvoiceORM.period_id == period_id)
            .where(orm_models.InvoiceORM.status != InvoiceStatus.CANCELLED.value)
            .order_by(orm_models.InvoiceORM.created_at)
        )
        .scalars()
        .first()
    )


def list_invoices(
    session: Session,
    *,
    work_id: str | None = None,
    period_id: str | None = None,
) -> list[orm_models.InvoiceORM]:
    statement = select(orm_models.InvoiceORM).order_by(orm_models.InvoiceORM.invoice_number)
    if work_id:
        statement = statement.where(orm_models.InvoiceORM.work_id == work_id)
    if period_id:
        statement = statement.where(orm_models.InvoiceORM.period_id == period_id)
    return list(session.execute(statement).scalars())


def delete_invoice_record(session: Session, invoice: orm_models.InvoiceORM) -> None:
    session.delete(invoice)
    session.flush()
