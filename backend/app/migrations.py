from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)


def _column_exists(connection: Connection, table: str, column: str) -> bool:
    result = connection.execute(text(f"PRAGMA table_info({table})"))
    return any(row[1] == column for row in result.fetchall())


def _ensure_columns(connection: Connection, table: str, columns: Iterable[tuple[str, str]]) -> None:
    for column, ddl in columns:
        if _column_exists(connection, table, column):
            continue
        connection.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
        logger.info("Added column %s.%s", table, column)


def _duplicate_groups(connection: Connection, table: str, key_columns: tuple[str, ...]) -> list[list[str]]:
    """Ids of rows sharing the same key, oldest first, for keys held by more than one row."""
    keys = ", ".join(key_columns)
    not_null = " AND ".join(f"{column} IS NOT NULL" for column in key_columns)
    rows = connection.execute(
        text(f"SELECT id, {keys} FROM {table} WHERE {not_null} ORDER BY {keys}, created_at, id")
    ).fetchall()

    groups: dict[tuple, list[str]] = {}
    for row in rows:
        groups.setdefault(tuple(row[1:]), []).append(row[0])
    return [ids for ids in groups.values() if len(ids) > 1]


def _dedupe_periods(connection: Connection) -> int:
    removed = 0
    for keeper, *duplicates in _duplicate_groups(connection, "work_periods", ("work_id", "period_start_date")):
        for duplicate in duplicates:
            params = {"keeper": keeper, "duplicate": duplicate}
            connection.execute(text("UPDATE invoices SET period_id = :keeper WHERE period_id = :duplicate"), params)
            connection.execute(text("DELETE FROM period_tasks WHERE period_id = :duplicate"), params)
            connection.execute(text("DELETE FROM work_periods WHERE id = :duplicate"), params)
            removed += 1
    return removed


def _dedupe_tasks(connection: Connection, template_column: str) -> int:
    removed = 0
    for _, *duplicates in _duplicate_groups(connection, "period_tasks", ("period_id", template_column)):
        for duplicate in duplicates:
            connection.execute(text("DELETE FROM period_tasks WHERE id = :id"), {"id": duplicate})
            removed += 1
    return removed


def _refresh_period_counters(connection: Connection) -> None:
    connection.execute(
        text(
            "UPDATE work_periods SET "
            "total_tasks = (SELECT COUNT(*) FROM period_tasks t WHERE t.period_id = work_periods.id), "
            "completed_tasks = (SELECT COUNT(*) FROM period_tasks t "
            "WHERE t.period_id = work_periods.id AND t.status = 'completed')"
        )
    )


UNIQUE_INDEXES = (
    ("uq_work_period_start", "work_periods", "work_id, period_start_date"),
    ("uq_period_service_task", "period_tasks", "period_id, service_task_id"),
    ("uq_period_work_task_template", "period_tasks", "period_id, work_task_template_id"),
)


def run_migrations(engine: Engine) -> None:
    dialect = engine.dialect.name
    if dialect != "sqlite":
        return

    with engine.begin() as connection:
        _ensure_columns(
            connection,
            "works",
            (
                ("status", "TEXT NOT NULL DEFAULT 'active'"),
                ("end_date", "DATE"),
                ("financial_year_start_month", "INTEGER"),
                ("weekly_start_day", "TEXT NOT NULL DEFAULT 'monday'"),
            ),
        )
        _ensure_columns(connection, "service_tasks", (("start_date", "DATE"),))
        _ensure_columns(
            connection,
            "services",
            (("income_account", "TEXT"),),
        )
        _ensure_columns(
            connection,
            "work_periods",
            (("is_overdue", "BOOLEAN NOT NULL DEFAULT 0"),),
        )
        _ensure_columns(
            connection,
            "period_tasks",
            (
                ("is_overdue", "BOOLEAN NOT NULL DEFAULT 0"),
                ("work_task_template_id", "TEXT REFERENCES work_task_templates(id) ON DELETE SET NULL"),
            ),
        )
        _ensure_columns(connection, "invoices", (("income_account", "TEXT"),))

        periods_removed = _dedupe_periods(connection)
        tasks_removed = _dedupe_tasks(connection, "service_task_id") + _dedupe_tasks(connection, "work_task_template_id")
        if periods_removed or tasks_removed:
            _refresh_period_counters(connection)
            logger.warning(
                "Removed %s duplicate period(s) and %s duplicate task(s)",
                periods_removed,
                tasks_removed,
            )

        for name, table, columns in UNIQUE_INDEXES:
            connection.execute(text(f"CREATE UNIQUE INDEX IF NOT EXISTS {name} ON {table} ({columns})"))
