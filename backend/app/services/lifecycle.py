"""Orchestration of the engine's lifecycle events.

Each event (work created, task status changed, task added or removed,
invoice deleted or cancelled, scheduler tick) has exactly one entry point
here, and it calls the engine components in a fixed order. Nothing in the
engine reacts on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import orm_models
from ..clock import Clock
from ..constants import InvoiceStatus, RecurrencePattern, TaskStatus, WorkStatus
from ..schemas import PeriodTaskCreate, WorkCreate
from .backfill import (
    TransactionFactory,
    active_recurring_work_ids,
    backfill_works,
    create_first_period,
    savepoint,
    update_overdue_status,
)
from .billing import bill_period, release_period_billing
from .catalog import (
    ServiceError,
    get_customer_record,
    get_period_record,
    get_service_record,
    get_task_record,
    get_work_record,
)
from .completion import recompute_period
from .invoices import delete_invoice_record, get_invoice

logger = logging.getLogger(__name__)


# === Works ==================================================================

def _validate_work_payload(payload: WorkCreate) -> None:
    errors: dict[str, str] = {}
    if payload.isRecurring:
        if payload.recurrencePattern is RecurrencePattern.NONE:
            errors["recurrencePattern"] = "Recurring work needs a recurrence pattern"
        if payload.startDate is None:
            errors["startDate"] = "Recurring work needs a start date"
    if errors:
        raise ServiceError(code="validation_failed", message="Work validation failed", details=errors)


def create_work(session: Session, payload: WorkCreate, clock: Clock) -> orm_models.WorkORM:
    _validate_work_payload(payload)
    get_customer_record(session, payload.customerId)
    if payload.serviceId:
        get_service_record(session, payload.serviceId)

    pattern = payload.recurrencePattern if payload.isRecurring else RecurrencePattern.NONE
    work = orm_models.WorkORM(
        customer_id=payload.customerId,
        service_id=payload.serviceId,
        title=payload.title.strip(),
        status=WorkStatus.ACTIVE.value,
        is_recurring=payload.isRecurring,
        recurrence_pattern=pattern.value,
        period_type=payload.periodType.value,
        start_date=payload.startDate,
        end_date=payload.endDate,
        financial_year_start_month=payload.financialYearStartMonth,
        weekly_start_day=payload.weeklyStartDay,
        billing_amount=payload.billingAmount,
        auto_bill=payload.autoBill,
    )
    session.add(work)
    session.flush()
    logger.info("Created work %s (%s, recurring=%s)", work.id, work.recurrence_pattern, work.is_recurring)

    on_work_created(session, work, clock)
    return work


def on_work_created(session: Session, work: orm_models.WorkORM, clock: Clock) -> Optional[orm_models.PeriodORM]:
    """Seed the first period; a failure here never undoes the work itself."""
    if not work.is_recurring:
        return None
    try:
        return create_first_period(session, work, clock)
    except (ValueError, SQLAlchemyError) as exc:
        logger.warning("Could not seed first period for work %s: %s", work.id, exc)
        return None


def delete_work(session: Session, work_id: str) -> None:
    work = get_work_record(session, work_id)
    session.delete(work)
    session.flush()
    logger.info("Deleted work %s with its periods and invoices", work_id)


# === Tasks ==================================================================

@dataclass
class TaskStatusOutcome:
    task: orm_models.PeriodTaskORM
    period: orm_models.PeriodORM
    invoice: Optional[orm_models.InvoiceORM] = None


def _is_past_due(task: orm_models.PeriodTaskORM, today: date) -> bool:
    return task.status == TaskStatus.PENDING.value and task.due_date is not None and task.due_date < today


def set_task_status(
    session: Session,
    task_id: str,
    status: TaskStatus | str,
    clock: Clock,
) -> TaskStatusOutcome:
    try:
        new_status = TaskStatus(status)
    except ValueError as exc:
        raise ServiceError("validation_failed", "Unknown task status", {"status": str(status)}) from exc

    task = get_task_record(session, task_id)
    if new_status is TaskStatus.COMPLETED:
        if task.status != TaskStatus.COMPLETED.value or task.completed_at is None:
            task.completed_at = clock.now()
    else:
        task.completed_at = None
    task.status = new_status.value
    task.is_overdue = _is_past_due(task, clock.today())

    period = task.period
    transition = recompute_period(session, period, clock)

    invoice = None
    if transition.entered_completed:
        invoice = bill_period(session, period, period.work, clock)
    return TaskStatusOutcome(task=task, period=period, invoice=invoice)


def add_period_task(
    session: Session,
    period_id: str,
    payload: PeriodTaskCreate,
    clock: Clock,
) -> orm_models.PeriodTaskORM:
    period = get_period_record(session, period_id)
    task = orm_models.PeriodTaskORM(
        period_id=period.id,
        title=payload.title,
        description=payload.description,
        due_date=payload.dueDate,
        status=TaskStatus.PENDING.value,
        sort_order=payload.sortOrder,
    )
    task.is_overdue = _is_past_due(task, clock.today())
    session.add(task)
    session.flush()
    recompute_period(session, period, clock)
    return task


def remove_period_task(session: Session, task_id: str, clock: Clock) -> orm_models.PeriodORM:
    task = get_task_record(session, task_id)
    period = task.period
    session.delete(task)
    session.flush()

    transition = recompute_period(session, period, clock)
    if transition.entered_completed:
        bill_period(session, period, period.work, clock)
    return period


# === Invoices ===============================================================

def _get_invoice_or_raise(session: Session, invoice_id: str) -> orm_models.InvoiceORM:
    invoice = get_invoice(session, invoice_id)
    if invoice is None:
        raise ServiceError("not_found", "Invoice not found", {"invoiceId": invoice_id})
    return invoice


def delete_invoice(session: Session, invoice_id: str, clock: Clock) -> None:
    invoice = _get_invoice_or_raise(session, invoice_id)
    release_period_billing(session, invoice, clock)
    delete_invoice_record(session, invoice)
    logger.info("Deleted invoice %s", invoice.invoice_number)


def cancel_invoice(session: Session, invoice_id: str, clock: Clock) -> orm_models.InvoiceORM:
    invoice = _get_invoice_or_raise(session, invoice_id)
    if invoice.status == InvoiceStatus.CANCELLED.value:
        return invoice
    invoice.status = InvoiceStatus.CANCELLED.value
    session.flush()
    release_period_billing(session, invoice, clock)
    logger.info("Cancelled invoice %s", invoice.invoice_number)
    return invoice


# === Scheduler ==============================================================

@dataclass
class SchedulerReport:
    run_date: date
    periods_created: dict[str, int] = field(default_factory=dict)
    overdue_changed: int = 0
    failed_works: list[str] = field(default_factory=list)

    @property
    def total_created(self) -> int:
        return sum(self.periods_created.values())


def run_scheduler(
    clock: Clock,
    transaction: TransactionFactory,
    *,
    work_ids: Optional[Iterable[str]] = None,
) -> SchedulerReport:
    """Backfill every active recurring work, then refresh overdue flags.

    ``transaction`` opens the unit of work for each step: a savepoint inside
    one request, or a committed session per work for the cron script. A
    failure on one work is recorded in the report and the run moves on.
    """
    report = SchedulerReport(run_date=clock.today())
    if work_ids is None:
        with transaction() as session:
            targets = active_recurring_work_ids(session)
    else:
        targets = list(work_ids)

    report.periods_created, report.failed_works = backfill_works(targets, clock, transaction)

    with transaction() as session:
        report.overdue_changed = update_overdue_status(session, clock)
    logger.info(
        "Scheduler run for %s: %s period(s) created across %s work(s), %s overdue flag(s) changed",
        report.run_date,
        report.total_created,
        len(report.periods_created),
        report.overdue_changed,
    )
    return report


def run_scheduled_jobs(
    session: Session,
    clock: Clock,
    *,
    work_ids: Optional[Iterable[str]] = None,
) -> SchedulerReport:
    return run_scheduler(clock, lambda: savepoint(session), work_ids=work_ids)
