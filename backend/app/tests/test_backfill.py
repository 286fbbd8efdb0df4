from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import func, select

import backend.app.services.backfill as backfill_module
from backend.app.orm_models import PeriodORM, PeriodTaskORM, ServiceTaskORM, WorkORM
from backend.app.services.backfill import (
    WorkSchedule,
    backfill,
    backfill_all,
    create_first_period,
    ensure_period,
    update_overdue_status,
)
from backend.app.services.catalog import ServiceError
from backend.app.services.lifecycle import on_work_created, run_scheduled_jobs, set_task_status
from backend.app.services.periods import PeriodBounds, PeriodConfigurationError


def _periods(session, work):
    return session.execute(
        select(PeriodORM).where(PeriodORM.work_id == work.id).order_by(PeriodORM.period_start_date)
    ).scalars().all()


def test_backfill_creates_elapsed_periods_once(session, make_work, clock):
    work = make_work(startDate=date(2025, 6, 15))
    assert [p.period_name for p in _periods(session, work)] == ["June 2025"]

    assert backfill(session, work.id, clock) == 4
    assert [p.period_name for p in _periods(session, work)] == [
        "June 2025",
        "July 2025",
        "August 2025",
        "September 2025",
        "October 2025",
    ]
    assert backfill(session, work.id, clock) == 0

    task_count = session.execute(select(func.count(PeriodTaskORM.id))).scalar_one()
    assert task_count == 10


def test_backfill_resumes_after_limit(session, make_work, clock):
    work = make_work(startDate=date(2025, 6, 15))

    assert backfill(session, work.id, clock, max_periods=2) == 2
    assert len(_periods(session, work)) == 3
    assert backfill(session, work.id, clock, max_periods=2) == 2
    assert backfill(session, work.id, clock, max_periods=2) == 0
    assert len(_periods(session, work)) == 5


def test_backfill_stops_at_work_end_date(session, make_work, clock):
    work = make_work(startDate=date(2025, 6, 15), endDate=date(2025, 8, 20))

    assert backfill(session, work.id, clock) == 2
    assert _periods(session, work)[-1].period_name == "August 2025"


def test_backfill_picks_up_newly_elapsed_period(session, make_work, clock):
    work = make_work(startDate=date(2025, 9, 1))
    assert backfill(session, work.id, clock) == 1

    clock.set(date(2025, 12, 1))
    assert backfill(session, work.id, clock) == 1
    assert _periods(session, work)[-1].period_name == "November 2025"


def test_previous_period_type_seeds_prior_month(session, make_work, clock):
    work = make_work(periodType="previous_period")
    periods = _periods(session, work)
    assert [(p.period_start_date, p.period_end_date) for p in periods] == [(date(2025, 10, 1), date(2025, 10, 31))]
    assert backfill(session, work.id, clock) == 0


def test_next_period_type_seeds_future_period(session, make_work):
    work = make_work(periodType="next_period")
    assert [p.period_name for p in _periods(session, work)] == ["December 2025"]


def test_quarterly_work_seeds_current_quarter(session, make_work):
    work = make_work(recurrencePattern="quarterly")
    assert [p.period_name for p in _periods(session, work)] == ["Q4 2025"]


def test_one_off_work_gets_no_periods(session, make_work, clock):
    work = make_work(isRecurring=False, recurrencePattern="none", startDate=None)
    assert _periods(session, work) == []
    assert backfill(session, work.id, clock) == 0


def test_recurring_work_requires_pattern_and_start(make_work):
    with pytest.raises(ServiceError) as excinfo:
        make_work(recurrencePattern="none", startDate=None)
    assert excinfo.value.code == "validation_failed"
    assert set(excinfo.value.details) == {"recurrencePattern", "startDate"}


def test_bad_configuration_is_logged_not_raised(session, customer, clock, caplog):
    work = WorkORM(
        customer_id=customer.id,
        title="Broken",
        is_recurring=True,
        recurrence_pattern="monthly",
        start_date=date(2025, 6, 1),
        weekly_start_day="someday",
    )
    session.add(work)
    session.flush()

    with pytest.raises(PeriodConfigurationError):
        WorkSchedule(work)
    assert create_first_period(session, work, clock) is None
    assert backfill(session, work.id, clock) == 0
    assert "Skipping backfill" in caplog.text


def test_backfill_unknown_work_raises_lookup_error(session, clock):
    with pytest.raises(LookupError):
        backfill(session, "work-missing", clock)


def test_ensure_period_returns_existing_row(session, make_work):
    work = make_work()
    bounds = WorkSchedule(work).first()

    period, created = ensure_period(session, work, bounds)

    assert created is False
    assert period.period_start_date == bounds.start
    assert len(_periods(session, work)) == 1


def test_backfill_all_covers_active_recurring_works(session, make_work, clock):
    monthly = make_work(startDate=date(2025, 8, 1))
    quarterly = make_work(recurrencePattern="quarterly", startDate=date(2025, 1, 1))
    paused = make_work(startDate=date(2025, 1, 1))
    paused.status = "on_hold"
    session.flush()

    results = backfill_all(session, clock)

    assert results == {monthly.id: 2, quarterly.id: 2}


def test_overdue_sweep_flags_only_pending_past_due_tasks(session, make_work, clock):
    work = make_work(startDate=date(2025, 10, 1))
    october = _periods(session, work)[0]
    collect, file_return = sorted(october.tasks, key=lambda task: task.sort_order)
    assert collect.due_date == date(2025, 10, 10)
    assert file_return.due_date == date(2025, 11, 20)

    assert update_overdue_status(session, clock) == 1
    session.refresh(collect)
    session.refresh(file_return)
    session.refresh(october)
    assert collect.is_overdue is True
    assert file_return.is_overdue is False
    assert october.is_overdue is True

    set_task_status(session, collect.id, "completed", clock)
    assert collect.is_overdue is False

    update_overdue_status(session, clock)
    session.refresh(october)
    assert october.is_overdue is False


def test_scheduler_run_reports_created_periods(session, make_work, clock):
    work = make_work(startDate=date(2025, 9, 1))

    report = run_scheduled_jobs(session, clock)

    assert report.run_date == date(2025, 11, 8)
    assert report.periods_created == {work.id: 1}
    assert report.total_created == 1
    assert report.failed_works == []
    assert report.overdue_changed == 3


def test_scheduler_run_records_failed_work_and_continues(session, make_work, clock):
    work = make_work(startDate=date(2025, 9, 1))

    report = run_scheduled_jobs(session, clock, work_ids=["work-missing", work.id])

    assert report.failed_works == ["work-missing"]
    assert report.periods_created == {work.id: 1}


def test_explicit_zero_limit_creates_nothing(session, make_work, clock):
    work = make_work(startDate=date(2025, 6, 15))

    assert backfill(session, work.id, clock, max_periods=0) == 0
    assert len(_periods(session, work)) == 1


def test_bad_stored_due_rule_skips_template_not_work(session, service, make_work, clock, caplog):
    session.add_all(
        [
            ServiceTaskORM(
                service_id=service.id,
                title="Fortnightly check",
                sort_order=3,
                due_offset_value=2,
                due_offset_unit="fortnights",
            ),
            ServiceTaskORM(service_id=service.id, title="Weekday filing", sort_order=4, due_weekday="someday"),
        ]
    )
    session.flush()

    work = make_work(startDate=date(2025, 8, 1))
    assert backfill_all(session, clock) == {work.id: 2}

    titles = session.execute(
        select(PeriodTaskORM.title).join(PeriodORM).where(PeriodORM.work_id == work.id)
    ).scalars().all()
    assert len(_periods(session, work)) == 3
    assert sorted(set(titles)) == ["Collect documents", "File return"]
    assert "Skipping task template" in caplog.text


def test_invalid_financial_year_month_is_logged_and_skipped(session, customer, clock, caplog):
    work = WorkORM(
        customer_id=customer.id,
        title="Annual return",
        is_recurring=True,
        recurrence_pattern="yearly",
        start_date=date(2024, 4, 1),
        financial_year_start_month=13,
    )
    session.add(work)
    session.flush()

    assert on_work_created(session, work, clock) is None
    assert backfill_all(session, clock, work_ids=[work.id]) == {work.id: 0}
    assert _periods(session, work) == []
    assert "Invalid financial year start month" in caplog.text


def test_ensure_period_reuses_row_when_insert_hits_unique_constraint(session, make_work, monkeypatch):
    work = make_work(startDate=date(2025, 11, 8))
    existing = _periods(session, work)[0]
    bounds = PeriodBounds(existing.period_start_date, existing.period_end_date, existing.period_name)

    real_find_period = backfill_module.find_period
    lookups = []

    def find_period_missing_once(session, work_id, start):
        lookups.append(start)
        if len(lookups) == 1:
            return None
        return real_find_period(session, work_id, start)

    monkeypatch.setattr(backfill_module, "find_period", find_period_missing_once)

    period, created = ensure_period(session, work, bounds)

    assert created is False
    assert period.id == existing.id
    assert len(_periods(session, work)) == 1
    task_count = session.execute(
        select(func.count()).select_from(PeriodTaskORM).where(PeriodTaskORM.period_id == existing.id)
    ).scalar_one()
    assert task_count == 2
