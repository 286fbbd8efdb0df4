from __future__ import annotations

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from backend.app.migrations import run_migrations

LEGACY_SCHEMA = (
    "CREATE TABLE works (id TEXT PRIMARY KEY, title TEXT)",
    "CREATE TABLE services (id TEXT PRIMARY KEY, name TEXT)",
    "CREATE TABLE service_tasks (id TEXT PRIMARY KEY, title TEXT)",
    "CREATE TABLE work_task_templates (id TEXT PRIMARY KEY)",
    "CREATE TABLE work_periods (id TEXT PRIMARY KEY, work_id TEXT, period_start_date DATE, "
    "total_tasks INTEGER DEFAULT 0, completed_tasks INTEGER DEFAULT 0, created_at DATETIME)",
    "CREATE TABLE period_tasks (id TEXT PRIMARY KEY, period_id TEXT, service_task_id TEXT, "
    "status TEXT, created_at DATETIME)",
    "CREATE TABLE invoices (id TEXT PRIMARY KEY, period_id TEXT)",
)


@pytest.fixture()
def legacy_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as connection:
        for statement in LEGACY_SCHEMA:
            connection.execute(text(statement))
        connection.execute(
            text(
                "INSERT INTO work_periods (id, work_id, period_start_date, created_at) VALUES "
                "('p1', 'w1', '2025-10-01', '2025-10-01 09:00:00'), "
                "('p2', 'w1', '2025-10-01', '2025-10-02 09:00:00')"
            )
        )
        connection.execute(
            text(
                "INSERT INTO period_tasks (id, period_id, service_task_id, status, created_at) VALUES "
                "('t1', 'p1', 'st1', 'completed', '2025-10-01 09:00:00'), "
                "('t2', 'p1', 'st1', 'pending', '2025-10-03 09:00:00'), "
                "('t3', 'p2', 'st1', 'pending', '2025-10-02 09:00:00')"
            )
        )
        connection.execute(text("INSERT INTO invoices (id, period_id) VALUES ('i1', 'p2')"))
    return engine


def test_migration_keeps_oldest_period_and_task(legacy_engine):
    run_migrations(legacy_engine)

    with legacy_engine.connect() as connection:
        periods = connection.execute(
            text("SELECT id, total_tasks, completed_tasks FROM work_periods")
        ).fetchall()
        tasks = connection.execute(text("SELECT id FROM period_tasks")).scalars().all()
        invoice_period = connection.execute(text("SELECT period_id FROM invoices WHERE id = 'i1'")).scalar_one()

    assert [tuple(row) for row in periods] == [("p1", 1, 1)]
    assert tasks == ["t1"]
    assert invoice_period == "p1"


def test_migration_adds_columns_and_unique_indexes(legacy_engine):
    run_migrations(legacy_engine)
    run_migrations(legacy_engine)

    with legacy_engine.connect() as connection:
        columns = {row[1] for row in connection.execute(text("PRAGMA table_info(works)"))}
        assert {"status", "end_date", "financial_year_start_month", "weekly_start_day"} <= columns

    with pytest.raises(IntegrityError):
        with legacy_engine.begin() as connection:
            connection.execute(
                text(
                    "INSERT INTO work_periods (id, work_id, period_start_date, created_at) "
                    "VALUES ('p3', 'w1', '2025-10-01', '2025-10-05 09:00:00')"
                )
            )
