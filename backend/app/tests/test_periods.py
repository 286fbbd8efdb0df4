from __future__ import annotations

from datetime import date

import pytest

from backend.app.constants import RecurrencePattern
from backend.app.services.periods import (
    PeriodConfigurationError,
    first_period,
    next_period,
    normalize_pattern,
    period_containing,
    previous_period,
    shift_period,
)


def test_monthly_previous_period_from_anchor():
    bounds = first_period(date(2025, 11, 8), "monthly", "previous_period")
    assert (bounds.start, bounds.end) == (date(2025, 10, 1), date(2025, 10, 31))
    assert bounds.name == "October 2025"


def test_quarterly_current_period_is_calendar_quarter():
    bounds = first_period(date(2025, 11, 8), "quarterly", "current_period")
    assert (bounds.start, bounds.end) == (date(2025, 10, 1), date(2025, 12, 31))
    assert bounds.name == "Q4 2025"


def test_next_period_type_moves_forward():
    bounds = first_period(date(2025, 11, 8), RecurrencePattern.MONTHLY, "next_period")
    assert (bounds.start, bounds.end) == (date(2025, 12, 1), date(2025, 12, 31))


@pytest.mark.parametrize(
    "value, expected",
    [
        (date(2025, 3, 31), (date(2025, 1, 1), date(2025, 6, 30), "H1 2025")),
        (date(2025, 7, 1), (date(2025, 7, 1), date(2025, 12, 31), "H2 2025")),
    ],
)
def test_half_yearly_bounds(value, expected):
    bounds = period_containing(value, "half-yearly")
    assert (bounds.start, bounds.end, bounds.name) == expected


def test_yearly_follows_financial_year_start():
    bounds = period_containing(date(2025, 11, 8), "yearly", fy_start_month=4)
    assert (bounds.start, bounds.end) == (date(2025, 4, 1), date(2026, 3, 31))
    assert bounds.name == "FY 2025-26"

    earlier = period_containing(date(2026, 2, 14), "yearly", fy_start_month=4)
    assert earlier == bounds

    calendar_year = period_containing(date(2025, 11, 8), "yearly", fy_start_month=1)
    assert (calendar_year.start, calendar_year.end, calendar_year.name) == (
        date(2025, 1, 1),
        date(2025, 12, 31),
        "FY 2025",
    )


def test_weekly_respects_week_start():
    monday_week = period_containing(date(2025, 11, 8), "weekly")
    assert (monday_week.start, monday_week.end) == (date(2025, 11, 3), date(2025, 11, 9))
    assert monday_week.name == "Week of 03 Nov 2025"

    sunday_week = period_containing(date(2025, 11, 8), "weekly", week_start=6)
    assert (sunday_week.start, sunday_week.end) == (date(2025, 11, 2), date(2025, 11, 8))


def test_daily_period_is_single_day():
    bounds = period_containing(date(2025, 11, 8), "daily")
    assert bounds.start == bounds.end == date(2025, 11, 8)
    assert bounds.contains(date(2025, 11, 8))
    assert not bounds.contains(date(2025, 11, 9))


def test_monthly_handles_leap_february():
    bounds = period_containing(date(2024, 2, 10), "monthly")
    assert bounds.end == date(2024, 2, 29)


def test_next_and_previous_cross_year_boundary():
    january = next_period(date(2025, 12, 31), "monthly")
    assert (january.start, january.name) == (date(2026, 1, 1), "January 2026")

    december = previous_period(date(2026, 1, 1), "monthly")
    assert (december.start, december.end) == (date(2025, 12, 1), date(2025, 12, 31))


def test_shift_period_walks_back_multiple_steps():
    q1 = period_containing(date(2025, 2, 1), "quarterly")
    shifted = shift_period(q1, -2, "quarterly")
    assert (shifted.start, shifted.end, shifted.name) == (date(2024, 7, 1), date(2024, 9, 30), "Q3 2024")
    assert shift_period(q1, 0, "quarterly") == q1


def test_pattern_none_and_unknown_values_raise():
    with pytest.raises(PeriodConfigurationError):
        period_containing(date(2025, 11, 8), "none")
    with pytest.raises(PeriodConfigurationError):
        normalize_pattern("fortnightly")
    with pytest.raises(PeriodConfigurationError):
        first_period(date(2025, 11, 8), "monthly", "last_period")


def test_pattern_aliases_normalize():
    assert normalize_pattern("Half-Yearly") is RecurrencePattern.HALF_YEARLY
    assert normalize_pattern("one-time") is RecurrencePattern.NONE
    assert normalize_pattern(None) is RecurrencePattern.NONE
