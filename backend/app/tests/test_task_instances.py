from __future__ import annotations

from datetime import date

from sqlalchemy import select

from backend.app.orm_models import (
    PeriodORM,
    PeriodTaskORM,
    ServiceTaskORM,
    WorkTaskConfigORM,
    WorkTaskTemplateORM,
)
import backend.app.services.task_instances as task_instances
from backend.app.services.task_instances import instantiate


def _tasks(session, period):
    return session.execute(
        select(PeriodTaskORM).where(PeriodTaskORM.period_id == period.id).order_by(PeriodTaskORM.sort_order)
    ).scalars().all()


def _november(session, work):
    period = PeriodORM(
        work_id=work.id,
        period_name="November 2025",
        period_start_date=date(2025, 11, 1),
        period_end_date=date(2025, 11, 30),
    )
    session.add(period)
    session.flush()
    return period


def test_first_period_is_populated_on_work_creation(session, make_work):
    work = make_work()
    period = session.execute(select(PeriodORM).where(PeriodORM.work_id == work.id)).scalar_one()

    tasks = _tasks(session, period)
    assert [(task.title, task.due_date) for task in tasks] == [
        ("Collect documents", date(2025, 11, 10)),
        ("File return", date(2025, 12, 20)),
    ]
    assert all(task.status == "pending" for task in tasks)
    assert period.total_tasks == 2


def test_instantiate_is_idempotent(session, make_work):
    work = make_work(startDate=date(2025, 12, 1))
    period = _november(session, work)

    assert instantiate(session, period, work) == 2
    assert instantiate(session, period, work) == 0
    assert len(_tasks(session, period)) == 2
    assert period.total_tasks == 2


def test_inactive_unapplicable_and_future_templates_are_skipped(session, service, make_work):
    session.add_all(
        [
            ServiceTaskORM(service_id=service.id, title="Retired step", is_active=False, sort_order=3),
            ServiceTaskORM(service_id=service.id, title="Annual review", due_month=3, due_day=31, sort_order=4),
            ServiceTaskORM(service_id=service.id, title="New regime filing", start_date=date(2026, 1, 1), sort_order=5),
        ]
    )
    session.flush()
    work = make_work(startDate=date(2025, 12, 1))
    period = _november(session, work)

    instantiate(session, period, work)

    assert [task.title for task in _tasks(session, period)] == ["Collect documents", "File return"]


def test_work_override_and_work_templates(session, service, make_work):
    work = make_work(startDate=date(2025, 12, 1))
    collect = next(task for task in service.tasks if task.title == "Collect documents")
    session.add_all(
        [
            WorkTaskConfigORM(work_id=work.id, service_task_id=collect.id, due_day=5),
            WorkTaskTemplateORM(
                work_id=work.id,
                title="Client review call",
                sort_order=9,
                due_offset_value=-3,
                due_offset_unit="days",
            ),
        ]
    )
    session.flush()
    period = _november(session, work)

    assert instantiate(session, period, work) == 3

    due = {task.title: task.due_date for task in _tasks(session, period)}
    assert due == {
        "Collect documents": date(2025, 11, 5),
        "File return": date(2025, 12, 20),
        "Client review call": date(2025, 11, 27),
    }
    ad_hoc = next(task for task in _tasks(session, period) if task.title == "Client review call")
    assert ad_hoc.service_task_id is None
    assert ad_hoc.work_task_template_id is not None


def test_work_without_service_gets_only_work_templates(session, make_work):
    work = make_work(serviceId=None, startDate=date(2025, 12, 1))
    session.add(WorkTaskTemplateORM(work_id=work.id, title="Reconcile ledger"))
    session.flush()
    period = _november(session, work)

    assert instantiate(session, period, work) == 1
    assert _tasks(session, period)[0].due_date == date(2025, 11, 30)


def test_unique_constraint_skips_tasks_the_precheck_missed(session, make_work, monkeypatch):
    work = make_work(startDate=date(2025, 12, 1))
    period = _november(session, work)
    assert instantiate(session, period, work) == 2

    monkeypatch.setattr(task_instances, "_existing_keys", lambda session, period_id: (set(), set()))

    assert instantiate(session, period, work) == 0
    assert len(_tasks(session, period)) == 2
    assert period.total_tasks == 2

    session.add(PeriodTaskORM(period_id=period.id, title="Follow up with client", sort_order=10))
    session.flush()
    assert len(_tasks(session, period)) == 3
