from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import orm_models
from ..constants import TaskStatus
from .completion import count_tasks
from .due_dates import TaskDueRule, resolve_due_date
from .periods import PeriodBounds

logger = logging.getLogger(__name__)


def bounds_of(period: orm_models.PeriodORM) -> PeriodBounds:
    return PeriodBounds(period.period_start_date, period.period_end_date, period.period_name)


def _active_service_tasks(session: Session, service_id: str | None) -> list[orm_models.ServiceTaskORM]:
    if not service_id:
        return []
    return list(
        session.execute(
            select(orm_models.ServiceTaskORM)
            .where(orm_models.ServiceTaskORM.service_id == service_id)
            .where(orm_models.ServiceTaskORM.is_active.is_(True))
            .order_by(orm_models.ServiceTaskORM.sort_order, orm_models.ServiceTaskORM.id)
        ).scalars()
    )


def _active_work_templates(session: Session, work_id: str) -> list[orm_models.WorkTaskTemplateORM]:
    return list(
        session.execute(
            select(orm_models.WorkTaskTemplateORM)
            .where(orm_models.WorkTaskTemplateORM.work_id == work_id)
            .where(orm_models.WorkTaskTemplateORM.is_active.is_(True))
            .order_by(orm_models.WorkTaskTemplateORM.sort_order, orm_models.WorkTaskTemplateORM.id)
        ).scalars()
    )


def _task_configs(session: Session, work_id: str) -> dict[str, orm_models.WorkTaskConfigORM]:
    configs = session.execute(
        select(orm_models.WorkTaskConfigORM).where(orm_models.WorkTaskConfigORM.work_id == work_id)
    ).scalars()
    return {config.service_task_id: config for config in configs}


def _existing_keys(session: Session, period_id: str) -> tuple[set[str], set[str]]:
    rows = session.execute(
        select(
            orm_models.PeriodTaskORM.service_task_id,
            orm_models.PeriodTaskORM.work_task_template_id,
        ).where(orm_models.PeriodTaskORM.period_id == period_id)
    ).all()
    service_ids = {row[0] for row in rows if row[0]}
    template_ids = {row[1] for row in rows if row[1]}
    return service_ids, template_ids


def _insert_once(session: Session, task: orm_models.PeriodTaskORM) -> bool:
    try:
        with session.begin_nested():
            session.add(task)
            session.flush()
    except IntegrityError:
        logger.debug("Task %r already exists in period %s, skipping", task.title, task.period_id)
        return False
    return True


def _service_task_rows(
    period: orm_models.PeriodORM,
    templates: Iterable[orm_models.ServiceTaskORM],
    configs: dict[str, orm_models.WorkTaskConfigORM],
    skip: set[str],
) -> Iterable[orm_models.PeriodTaskORM]:
    bounds = bounds_of(period)
    for template in templates:
        if template.id in skip:
            continue
        if template.start_date is not None and bounds.end < template.start_date:
            continue
        try:
            rule = TaskDueRule.from_template(template, configs.get(template.id))
            due_date = resolve_due_date(rule, bounds)
        except ValueError as exc:
            logger.warning("Skipping task template %s in period %s: %s", template.id, period.period_name, exc)
            continue
        if due_date is None:
            logger.debug("Task template %s not applicable to period %s", template.id, period.period_name)
            continue
        yield orm_models.PeriodTaskORM(
            period_id=period.id,
            service_task_id=template.id,
            title=template.title,
            description=template.description,
            due_date=due_date,
            status=TaskStatus.PENDING.value,
            sort_order=template.sort_order or 0,
        )


def _work_template_rows(
    period: orm_models.PeriodORM,
    templates: Iterable[orm_models.WorkTaskTemplateORM],
    skip: set[str],
) -> Iterable[orm_models.PeriodTaskORM]:
    bounds = bounds_of(period)
    for template in templates:
        if template.id in skip:
            continue
        try:
            rule = TaskDueRule.period_end(template.due_offset_value, template.due_offset_unit)
        except ValueError as exc:
            logger.warning("Skipping work task template %s in period %s: %s", template.id, period.period_name, exc)
            continue
        yield orm_models.PeriodTaskORM(
            period_id=period.id,
            work_task_template_id=template.id,
            title=template.title,
            description=template.description,
            due_date=resolve_due_date(rule, bounds),
            status=TaskStatus.PENDING.value,
            sort_order=template.sort_order or 0,
        )


def instantiate(session: Session, period: orm_models.PeriodORM, work: orm_models.WorkORM) -> int:
    """Materialize the work's task templates inside ``period``.

    Safe to call repeatedly: a template already present in the period is
    skipped, both by the pre-check and by the unique constraint.
    """
    if period.id is None:
        session.flush()

    existing_service, existing_templates = _existing_keys(session, period.id)
    configs = _task_configs(session, work.id)
    rows = [
        *_service_task_rows(period, _active_service_tasks(session, work.service_id), configs, existing_service),
        *_work_template_rows(period, _active_work_templates(session, work.id), existing_templates),
    ]

    created = sum(1 for row in rows if _insert_once(session, row))

    period.total_tasks, _ = count_tasks(session, period.id)
    if created:
        logger.info("Created %s task(s) for period %s (%s)", created, period.id, period.period_name)
    return created
