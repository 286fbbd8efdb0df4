from __future__ import annotations

import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import orm_models
from ..clock import Clock
from ..config import Settings, settings
from .completion import recompute_period
from .invoices import InvoiceDraft, InvoiceLine, create_invoice, find_live_invoice_for_period

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class BillingError(RuntimeError):
    """Invoice could not be issued for a completed period."""


def _as_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def resolve_amount(
    period: orm_models.PeriodORM,
    work: orm_models.WorkORM,
    service: Optional[orm_models.ServiceORM],
) -> Optional[Decimal]:
    candidates = (
        period.billing_amount,
        work.billing_amount,
        service.default_price if service is not None else None,
    )
    for candidate in candidates:
        amount = _as_decimal(candidate)
        if amount is not None and amount > 0:
            return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    return None


def compute_tax(amount: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    tax = (amount * rate / Decimal(100)).quantize(CENTS, rounding=ROUND_HALF_UP)
    return tax, amount + tax


def resolve_income_account(service: Optional[orm_models.ServiceORM], config: Settings) -> Optional[str]:
    account = service.income_account if service is not None else None
    account = account or config.default_income_account
    if account is None and config.require_income_account:
        raise BillingError("no income account mapped for the service and no default configured")
    return account


def _link(period: orm_models.PeriodORM, invoice: orm_models.InvoiceORM) -> None:
    period.is_billed = True
    period.invoice_id = invoice.id


def bill_period(
    session: Session,
    period: orm_models.PeriodORM,
    work: orm_models.WorkORM,
    clock: Clock,
    config: Settings = settings,
) -> Optional[orm_models.InvoiceORM]:
    """Issue the single invoice for a period that has just been completed.

    Returns ``None`` when billing does not apply or was skipped; a skipped
    invoice never changes the period's completion state.
    """
    if not work.auto_bill:
        return None
    if period.is_billed:
        logger.debug("Period %s already billed with invoice %s", period.id, period.invoice_id)
        return None

    existing = find_live_invoice_for_period(session, period.id)
    if existing is not None:
        _link(period, existing)
        session.flush()
        logger.info("Re-linked invoice %s to period %s", existing.invoice_number, period.id)
        return existing

    service = work.service
    amount = resolve_amount(period, work, service)
    if amount is None:
        logger.info("No billable amount for period %s of work %s; invoice skipped", period.id, work.id)
        return None

    rate = _as_decimal(service.tax_rate if service is not None else None) or Decimal("0")
    tax, total = compute_tax(amount, rate)
    invoice_date = clock.today()
    service_name = service.name if service is not None else (work.title or "Service")

    try:
        income_account = resolve_income_account(service, config)
        with session.begin_nested():
            invoice = create_invoice(
                session,
                InvoiceDraft(
                    customer_id=work.customer_id,
                    work_id=work.id,
                    period_id=period.id,
                    invoice_date=invoice_date,
                    due_date=invoice_date + timedelta(days=config.invoice_due_days),
                    subtotal=amount,
                    tax_rate=rate,
                    tax_amount=tax,
                    total_amount=total,
                    notes=f"Auto-generated for {period.period_name}",
                    income_account=income_account,
                    lines=[
                        InvoiceLine(
                            description=f"{service_name} - {period.period_name}",
                            unit_price=amount,
                            service_id=service.id if service is not None else None,
                        )
                    ],
                ),
                config,
            )
            _link(period, invoice)
            session.flush()
    except (BillingError, SQLAlchemyError) as exc:
        logger.warning("Invoice for period %s of work %s skipped: %s", period.id, work.id, exc)
        return None

    logger.info(
        "Created invoice %s for period %s (%s + %s tax = %s)",
        invoice.invoice_number,
        period.period_name,
        amount,
        tax,
        total,
    )
    return invoice


def release_period_billing(session: Session, invoice: orm_models.InvoiceORM, clock: Clock) -> Optional[orm_models.PeriodORM]:
    """Detach an invoice from its period so the period can be billed again."""
    if not invoice.period_id:
        return None
    period = session.get(orm_models.PeriodORM, invoice.period_id)
    if period is None:
        return None
    if period.invoice_id in (None, invoice.id):
        period.is_billed = False
        period.invoice_id = None
    session.flush()
    recompute_period(session, period, clock)
    return period
