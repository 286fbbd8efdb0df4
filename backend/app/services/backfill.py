from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Callable, ContextManager, Iterable, Iterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import orm_models
from ..clock import Clock
from ..config import settings
from ..constants import PeriodType, RecurrencePattern, TaskStatus, WorkStatus
from .periods import (
    PeriodBounds,
    PeriodConfigurationError,
    first_period,
    next_period,
    normalize_pattern,
    weekday_index,
)
from .task_instances import instantiate

logger = logging.getLogger(__name__)


class WorkSchedule:
    """Recurrence settings of a work, validated once and bound to the period calculator."""

    def __init__(self, work: orm_models.WorkORM):
        if not work.is_recurring:
            raise PeriodConfigurationError(f"Work {work.id} is not recurring")
        self.pattern = normalize_pattern(work.recurrence_pattern)
        if self.pattern is RecurrencePattern.NONE:
            raise PeriodConfigurationError(f"Work {work.id} has no recurrence pattern")
        if work.start_date is None:
            raise PeriodConfigurationError(f"Work {work.id} has no start date")
        self.start_date: date = work.start_date
        self.end_date: Optional[date] = work.end_date
        try:
            self.period_type = PeriodType(work.period_type)
        except ValueError as exc:
            raise PeriodConfigurationError(f"Work {work.id} has unknown period type {work.period_type!r}") from exc
        self.fy_start_month = work.financial_year_start_month or settings.financial_year_start_month
        try:
            self.week_start = weekday_index(work.weekly_start_day)
        except ValueError as exc:
            raise PeriodConfigurationError(str(exc)) from exc

    def first(self) -> PeriodBounds:
        return first_period(
            self.start_date,
            self.pattern,
            self.period_type,
            fy_start_month=self.fy_start_month,
            week_start=self.week_start,
        )

    def after(self, bounds: PeriodBounds) -> PeriodBounds:
        return next_period(bounds.end, self.pattern, fy_start_month=self.fy_start_month, week_start=self.week_start)

    def within_term(self, bounds: PeriodBounds) -> bool:
        return self.end_date is None or bounds.start <= self.end_date


def find_period(session: Session, work_id: str, start: date) -> Optional[orm_models.PeriodORM]:
    return session.execute(
        select(orm_models.PeriodORM)
        .where(orm_models.PeriodORM.work_id == work_id)
        .where(orm_models.PeriodORM.period_start_date == start)
    ).scalar_one_or_none()


def ensure_period(
    session: Session,
    work: orm_models.WorkORM,
    bounds: PeriodBounds,
) -> tuple[orm_models.PeriodORM, bool]:
    """Return the work's period starting at ``bounds.start``, creating it and its tasks if missing.

    The period row and its tasks are written in one savepoint, so a failure
    leaves neither behind.
    """
    existing = find_period(session, work.id, bounds.start)
    if existing is not None:
        return existing, False

    period = orm_models.PeriodORM(
        work_id=work.id,
        period_name=bounds.name,
        period_start_date=bounds.start,
        period_end_date=bounds.end,
    )
    try:
        with session.begin_nested():
            session.add(period)
            session.flush()
            instantiate(session, period, work)
    except IntegrityError:
        logger.debug("Period %s for work %s created concurrently, reusing it", bounds.start, work.id)
        existing = find_period(session, work.id, bounds.start)
        if existing is None:
            raise
        return existing, False

    logger.info("Created period %s (%s..%s) for work %s", bounds.name, bounds.start, bounds.end, work.id)
    return period, True


def create_first_period(session: Session, work: orm_models.WorkORM, clock: Clock) -> Optional[orm_models.PeriodORM]:
    """Seed the first period of a recurring work.

    Only this one period is created synchronously; later periods are left to
    :func:`backfill`. Configuration problems are logged and yield ``None``.
    """
    try:
        schedule = WorkSchedule(work)
        bounds = schedule.first()
    except PeriodConfigurationError as exc:
        logger.warning("Skipping first period for work %s: %s", work.id, exc)
        return None
    period, _ = ensure_period(session, work, bounds)
    return period


def backfill(
    session: Session,
    work_id: str,
    clock: Clock,
    *,
    max_periods: Optional[int] = None,
) -> int:
    """Create every elapsed period of a work that does not exist yet.

    Walks forward from the first period while the candidate's end date lies
    before today. Re-running after a partial or complete run creates only what
    is still missing.
    """
    work = session.get(orm_models.WorkORM, work_id)
    if work is None:
        raise LookupError(f"Work {work_id} not found")

    try:
        schedule = WorkSchedule(work)
        bounds = schedule.first()
    except PeriodConfigurationError as exc:
        logger.warning("Skipping backfill for work %s: %s", work_id, exc)
        return 0

    limit = settings.backfill_max_periods if max_periods is None else max_periods
    if limit <= 0:
        return 0
    today = clock.today()
    created = 0

    _, was_created = ensure_period(session, work, bounds)
    created += int(was_created)

    while created < limit:
        bounds = schedule.after(bounds)
        if bounds.end >= today or not schedule.within_term(bounds):
            break
        _, was_created = ensure_period(session, work, bounds)
        created += int(was_created)
    else:
        logger.info("Backfill for work %s stopped after %s period(s); rerun to continue", work_id, limit)

    return created


def active_recurring_work_ids(session: Session) -> list[str]:
    return list(
        session.execute(
            select(orm_models.WorkORM.id)
            .where(orm_models.WorkORM.is_recurring.is_(True))
            .where(orm_models.WorkORM.status == WorkStatus.ACTIVE.value)
            .order_by(orm_models.WorkORM.created_at, orm_models.WorkORM.id)
        ).scalars()
    )


TransactionFactory = Callable[[], ContextManager[Session]]

# PeriodConfigurationError and bad stored due rules both surface as ValueError.
BACKFILL_ERRORS = (LookupError, ValueError, SQLAlchemyError)


@contextmanager
def savepoint(session: Session) -> Iterator[Session]:
    with session.begin_nested():
        yield session


def backfill_works(
    work_ids: Iterable[str],
    clock: Clock,
    transaction: TransactionFactory,
) -> tuple[dict[str, int], list[str]]:
    """Backfill each work inside its own ``transaction()``.

    Returns the periods created per work and the ids of the works that
    failed. A failing work is logged and the loop moves on.
    """
    results: dict[str, int] = {}
    failed: list[str] = []
    for work_id in work_ids:
        try:
            with transaction() as session:
                results[work_id] = backfill(session, work_id, clock)
        except BACKFILL_ERRORS as exc:
            logger.warning("Scheduled backfill failed for work %s: %s", work_id, exc)
            failed.append(work_id)
    return results, failed


def backfill_all(
    session: Session,
    clock: Clock,
    *,
    work_ids: Optional[Iterable[str]] = None,
) -> dict[str, int]:
    """Backfill each work in its own savepoint; failed works are left out of the result."""
    targets = list(work_ids) if work_ids is not None else active_recurring_work_ids(session)
    results, _ = backfill_works(targets, clock, lambda: savepoint(session))
    return results


def update_overdue_status(session: Session, clock: Clock) -> int:
    """Flag pending tasks whose due date has passed; clear the flag everywhere else."""
    session.flush()
    today = clock.today()
    task = orm_models.PeriodTaskORM
    period = orm_models.PeriodORM

    flagged = session.execute(
        update(task)
        .where(task.status == TaskStatus.PENDING.value)
        .where(task.due_date.is_not(None))
        .where(task.due_date < today)
        .where(task.is_overdue.is_(False))
        .values(is_overdue=True)
        .execution_options(synchronize_session=False)
    ).rowcount
    cleared = session.execute(
        update(task)
        .where(task.is_overdue.is_(True))
        .where((task.status != TaskStatus.PENDING.value) | task.due_date.is_(None) | (task.due_date >= today))
        .values(is_overdue=False)
        .execution_options(synchronize_session=False)
    ).rowcount

    overdue_periods = select(task.period_id).where(task.is_overdue.is_(True))
    session.execute(
        update(period)
        .where(period.id.in_(overdue_periods))
        .values(is_overdue=True)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(period)
        .where(period.is_overdue.is_(True))
        .where(period.id.not_in(overdue_periods))
        .values(is_overdue=False)
        .execution_options(synchronize_session=False)
    )
    session.expire_all()

    changed = (flagged or 0) + (cleared or 0)
    if changed:
        logger.info("Overdue sweep on %s: %s flagged, %s cleared", today, flagged, cleared)
    return changed
