"""Reporting period arithmetic.

Pure functions mapping a recurrence pattern and a date to the boundaries and
display name of the period containing it. Shifting to the previous or next
period always goes through :func:`period_containing`, so there is exactly one
place where boundaries are computed.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta

from ..constants import PATTERN_ALIASES, WEEKDAYS, PeriodType, RecurrencePattern

DEFAULT_FY_START_MONTH = 4


class PeriodConfigurationError(ValueError):
    """Raised when a work's recurrence settings cannot produce periods."""


@dataclass(frozen=True)
class PeriodBounds:
    start: date
    end: date
    name: str

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def normalize_pattern(value: RecurrencePattern | str | None) -> RecurrencePattern:
    if isinstance(value, RecurrencePattern):
        return value
    raw = (value or "").strip().lower()
    if raw in PATTERN_ALIASES:
        return PATTERN_ALIASES[raw]
    try:
        return RecurrencePattern(raw)
    except ValueError as exc:
        raise PeriodConfigurationError(f"Unknown recurrence pattern: {value!r}") from exc


def weekday_index(name: str | None, default: int = 0) -> int:
    if not name:
        return default
    normalized = name.strip().lower()
    if normalized not in WEEKDAYS:
        raise ValueError(f"Unknown weekday: {name!r}")
    return WEEKDAYS.index(normalized)


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _month_span(year: int, month: int, length: int) -> tuple[date, date]:
    """First day of ``year-month`` and last day of the ``length``-month block it opens."""
    start = date(year, month, 1)
    end_index = (month - 1) + length - 1
    end_year = year + end_index // 12
    end_month = end_index % 12 + 1
    return start, date(end_year, end_month, last_day_of_month(end_year, end_month))


def _financial_year(value: date, fy_start_month: int) -> tuple[date, date, str]:
    start_year = value.year if value.month >= fy_start_month else value.year - 1
    start, end = _month_span(start_year, fy_start_month, 12)
    if fy_start_month == 1:
        name = f"FY {start_year}"
    else:
        name = f"FY {start_year}-{(start_year + 1) % 100:02d}"
    return start, end, name


def period_containing(
    value: date,
    pattern: RecurrencePattern | str,
    *,
    fy_start_month: int = DEFAULT_FY_START_MONTH,
    week_start: int = 0,
) -> PeriodBounds:
    resolved = normalize_pattern(pattern)

    if resolved is RecurrencePattern.MONTHLY:
        start, end = _month_span(value.year, value.month, 1)
        return PeriodBounds(start, end, start.strftime("%B %Y"))

    if resolved is RecurrencePattern.QUARTERLY:
        quarter = (value.month - 1) // 3 + 1
        start, end = _month_span(value.year, (quarter - 1) * 3 + 1, 3)
        return PeriodBounds(start, end, f"Q{quarter} {value.year}")

    if resolved is RecurrencePattern.HALF_YEARLY:
        half = 1 if value.month <= 6 else 2
        start, end = _month_span(value.year, 1 if half == 1 else 7, 6)
        return PeriodBounds(start, end, f"H{half} {value.year}")

    if resolved is RecurrencePattern.YEARLY:
        if not 1 <= fy_start_month <= 12:
            raise PeriodConfigurationError(f"Invalid financial year start month: {fy_start_month}")
        start, end, name = _financial_year(value, fy_start_month)
        return PeriodBounds(start, end, name)

    if resolved is RecurrencePattern.WEEKLY:
        start = value - timedelta(days=(value.weekday() - week_start) % 7)
        return PeriodBounds(start, start + timedelta(days=6), f"Week of {start:%d %b %Y}")

    if resolved is RecurrencePattern.DAILY:
        return PeriodBounds(value, value, f"{value:%d %b %Y}")

    raise PeriodConfigurationError(f"Recurrence pattern {resolved.value!r} does not produce periods")


def next_period(
    anchor_end: date,
    pattern: RecurrencePattern | str,
    *,
    fy_start_month: int = DEFAULT_FY_START_MONTH,
    week_start: int = 0,
) -> PeriodBounds:
    return period_containing(
        anchor_end + timedelta(days=1),
        pattern,
        fy_start_month=fy_start_month,
        week_start=week_start,
    )


def previous_period(
    anchor_start: date,
    pattern: RecurrencePattern | str,
    *,
    fy_start_month: int = DEFAULT_FY_START_MONTH,
    week_start: int = 0,
) -> PeriodBounds:
    return period_containing(
        anchor_start - timedelta(days=1),
        pattern,
        fy_start_month=fy_start_month,
        week_start=week_start,
    )


def shift_period(
    bounds: PeriodBounds,
    steps: int,
    pattern: RecurrencePattern | str,
    *,
    fy_start_month: int = DEFAULT_FY_START_MONTH,
    week_start: int = 0,
) -> PeriodBounds:
    current = bounds
    for _ in range(abs(steps)):
        if steps > 0:
            current = next_period(current.end, pattern, fy_start_month=fy_start_month, week_start=week_start)
        else:
            current = previous_period(current.start, pattern, fy_start_month=fy_start_month, week_start=week_start)
    return current


def first_period(
    start_date: date,
    pattern: RecurrencePattern | str,
    period_type: PeriodType | str = PeriodType.CURRENT_PERIOD,
    *,
    fy_start_month: int = DEFAULT_FY_START_MONTH,
    week_start: int = 0,
) -> PeriodBounds:
    try:
        resolved_type = PeriodType(period_type)
    except ValueError as exc:
        raise PeriodConfigurationError(f"Unknown period type: {period_type!r}") from exc
    containing = period_containing(start_date, pattern, fy_start_month=fy_start_month, week_start=week_start)
    return shift_period(
        containing,
        resolved_type.shift,
        pattern,
        fy_start_month=fy_start_month,
        week_start=week_start,
    )
