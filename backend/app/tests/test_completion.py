from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select

from backend.app.constants import PeriodStatus
from backend.app.orm_models import PeriodORM, ServiceTaskORM
from backend.app.schemas import PeriodTaskCreate
from backend.app.services.catalog import ServiceError
from backend.app.services.completion import derive_status, recompute_period
from backend.app.services.lifecycle import add_period_task, remove_period_task, set_task_status


@pytest.mark.parametrize(
    "total, completed, expected",
    [
        (0, 0, PeriodStatus.PENDING),
        (5, 0, PeriodStatus.PENDING),
        (5, 4, PeriodStatus.IN_PROGRESS),
        (5, 5, PeriodStatus.COMPLETED),
    ],
)
def test_derive_status(total, completed, expected):
    assert derive_status(total, completed) is expected


@pytest.fixture()
def period_with_five_tasks(session, service, make_work):
    service.default_price = None
    session.add_all(
        ServiceTaskORM(service_id=service.id, title=f"Step {index}", sort_order=index) for index in range(3, 6)
    )
    session.flush()
    work = make_work()
    period = session.execute(select(PeriodORM).where(PeriodORM.work_id == work.id)).scalar_one()
    assert period.total_tasks == 5
    return period


def test_completion_aggregate_follows_task_status(session, clock, period_with_five_tasks):
    period = period_with_five_tasks
    tasks = sorted(period.tasks, key=lambda task: task.sort_order)

    for task in tasks[:4]:
        set_task_status(session, task.id, "completed", clock)
    assert period.status == PeriodStatus.IN_PROGRESS.value
    assert (period.completed_tasks, period.total_tasks) == (4, 5)
    assert period.completed_at is None

    outcome = set_task_status(session, tasks[4].id, "completed", clock)
    assert outcome.period is period
    assert period.status == PeriodStatus.COMPLETED.value
    assert period.all_tasks_completed is True
    assert period.completed_at == clock.now()

    set_task_status(session, tasks[0].id, "pending", clock)
    assert period.status == PeriodStatus.IN_PROGRESS.value
    assert period.completed_at is None
    assert period.all_tasks_completed is False
    assert tasks[0].completed_at is None


def test_recompute_reports_transitions(session, clock, period_with_five_tasks):
    period = period_with_five_tasks
    for task in period.tasks:
        task.status = "completed"

    transition = recompute_period(session, period, clock)
    assert transition.entered_completed is True
    assert transition.left_completed is False

    again = recompute_period(session, period, clock)
    assert again.entered_completed is False
    assert again.previous is again.current is PeriodStatus.COMPLETED


def test_manual_task_reopens_completed_period(session, clock, period_with_five_tasks):
    period = period_with_five_tasks
    for task in list(period.tasks):
        set_task_status(session, task.id, "completed", clock)
    assert period.status == PeriodStatus.COMPLETED.value

    extra = add_period_task(
        session,
        period.id,
        PeriodTaskCreate(title="Answer notice", dueDate=date(2025, 11, 1)),
        clock,
    )
    assert extra.service_task_id is None
    assert extra.is_overdue is True
    assert period.status == PeriodStatus.IN_PROGRESS.value
    assert period.total_tasks == 6

    remove_period_task(session, extra.id, clock)
    assert period.status == PeriodStatus.COMPLETED.value
    assert period.total_tasks == 5


def test_unknown_task_and_status_are_rejected(session, clock, period_with_five_tasks):
    with pytest.raises(ServiceError) as missing:
        set_task_status(session, "ptask-missing", "completed", clock)
    assert missing.value.code == "not_found"

    task = period_with_five_tasks.tasks[0]
    with pytest.raises(ServiceError) as invalid:
        set_task_status(session, task.id, "blocked", clock)
    assert invalid.value.code == "validation_failed"
