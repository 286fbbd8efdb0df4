from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from .. import orm_models
from ..clock import Clock
from ..constants import InvoiceStatus, PeriodStatus, TaskStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodTransition:
    period_id: str
    previous: PeriodStatus
    current: PeriodStatus
    total: int
    completed: int

    @property
    def entered_completed(self) -> bool:
        return self.current is PeriodStatus.COMPLETED and self.previous is not PeriodStatus.COMPLETED

    @property
    def left_completed(self) -> bool:
        return self.previous is PeriodStatus.COMPLETED and self.current is not PeriodStatus.COMPLETED


def count_tasks(session: Session, period_id: str) -> tuple[int, int]:
    total, completed = session.execute(
        select(
            func.count(orm_models.PeriodTaskORM.id),
            func.coalesce(
                func.sum(case((orm_models.PeriodTaskORM.status == TaskStatus.COMPLETED.value, 1), else_=0)),
                0,
            ),
        ).where(orm_models.PeriodTaskORM.period_id == period_id)
    ).one()
    return int(total or 0), int(completed or 0)


def derive_status(total: int, completed: int) -> PeriodStatus:
    if total <= 0 or completed <= 0:
        return PeriodStatus.PENDING
    if completed < total:
        return PeriodStatus.IN_PROGRESS
    return PeriodStatus.COMPLETED


def has_live_invoice(session: Session, period: orm_models.PeriodORM) -> bool:
    if not period.invoice_id:
        return False
    invoice = session.get(orm_models.InvoiceORM, period.invoice_id)
    return invoice is not None and invoice.status != InvoiceStatus.CANCELLED.value


def recompute_period(session: Session, period: orm_models.PeriodORM, clock: Clock) -> PeriodTransition:
    """Recount the period's tasks from source rows and derive its status."""
    session.flush()
    total, completed = count_tasks(session, period.id)
    previous = PeriodStatus(period.status or PeriodStatus.PENDING.value)
    current = derive_status(total, completed)

    period.total_tasks = total
    period.completed_tasks = completed
    period.all_tasks_completed = current is PeriodStatus.COMPLETED
    period.status = current.value

    transition = PeriodTransition(
        period_id=period.id,
        previous=previous,
        current=current,
        total=total,
        completed=completed,
    )

    if current is PeriodStatus.COMPLETED:
        if period.completed_at is None:
            period.completed_at = clock.now()
        period.is_overdue = False
    elif transition.left_completed or period.completed_at is not None:
        period.completed_at = None
        if not has_live_invoice(session, period):
            period.is_billed = False
            period.invoice_id = None

    if previous is not current:
        logger.info(
            "Period %s moved %s -> %s (%s/%s tasks)",
            period.id,
            previous.value,
            current.value,
            completed,
            total,
        )

    session.flush()
    return transition
