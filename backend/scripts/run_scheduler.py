#!/usr/bin/env python
"""Cron entry point: create newly elapsed periods and refresh overdue flags.

Each work is backfilled in its own transaction, so an interrupted run keeps
the periods of every work it already finished.
"""
from __future__ import annotations

import argparse
import logging
from datetime import date

from backend.app.clock import Clock, FixedClock, system_clock
from backend.app.database import configure_logging, init_db, session_scope
from backend.app.services.backfill import TransactionFactory
from backend.app.services.lifecycle import SchedulerReport, run_scheduler

logger = logging.getLogger("backend.scripts.run_scheduler")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Backfill elapsed periods for recurring works and update overdue flags."
    )
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Run as if today were this date (YYYY-MM-DD). Defaults to the system clock.",
    )
    parser.add_argument(
        "--work-id",
        action="append",
        dest="work_ids",
        default=None,
        help="Limit the run to this work; may be given more than once.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (defaults to LOG_LEVEL from settings).",
    )
    return parser.parse_args(argv)


def run(
    clock: Clock,
    work_ids: list[str] | None = None,
    transaction: TransactionFactory = session_scope,
) -> SchedulerReport:
    return run_scheduler(clock, transaction, work_ids=work_ids)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    init_db()

    clock: Clock = FixedClock(args.date) if args.date else system_clock
    report = run(clock, args.work_ids)

    logger.info(
        "Run for %s finished: %s period(s) created, %s overdue flag(s) changed, %s failure(s)",
        report.run_date,
        report.total_created,
        report.overdue_changed,
        len(report.failed_works),
    )
    return 1 if report.failed_works else 0


if __name__ == "__main__":
    raise SystemExit(main())
