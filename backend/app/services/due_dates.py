"""Task due-date rules.

A due date is resolved in two phases: first a base date is chosen inside the
period (exact date, month/day, weekday, day of month or, failing all of
those, the period end), then the configured offset is added to that base.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Protocol

from ..constants import WEEKDAYS, OffsetUnit
from .periods import last_day_of_month, weekday_index


class PeriodLike(Protocol):
    start: date
    end: date


@dataclass(frozen=True)
class DueOffset:
    value: int = 0
    unit: OffsetUnit = OffsetUnit.DAYS

    @classmethod
    def parse(cls, value: Optional[int], unit: Optional[str]) -> "DueOffset":
        if not value:
            return cls()
        try:
            resolved_unit = OffsetUnit((unit or OffsetUnit.DAYS.value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown offset unit: {unit!r}") from exc
        return cls(value=int(value), unit=resolved_unit)

    def apply(self, base: date) -> date:
        if not self.value:
            return base
        if self.unit is OffsetUnit.DAYS:
            return base + timedelta(days=self.value)
        if self.unit is OffsetUnit.WEEKS:
            return base + timedelta(weeks=self.value)
        return add_months(base, self.value)


def add_months(value: date, months: int) -> date:
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(value.day, last_day_of_month(year, month)))


BASE_RULE_FIELDS = ("exact_due_date", "due_month", "due_day", "due_weekday")


def _is_set(value) -> bool:
    return value is not None and value != ""


@dataclass(frozen=True)
class TaskDueRule:
    exact_date: Optional[date] = None
    month: Optional[int] = None
    day: Optional[int] = None
    weekday: Optional[str] = None
    offset: DueOffset = DueOffset()

    def __post_init__(self) -> None:
        if self.month is not None and not 1 <= self.month <= 12:
            raise ValueError(f"Due month must be within 1..12, got {self.month}")
        if self.day is not None and not 1 <= self.day <= 31:
            raise ValueError(f"Due day must be within 1..31, got {self.day}")
        if self.weekday is not None and self.weekday.strip().lower() not in WEEKDAYS:
            raise ValueError(f"Unknown weekday: {self.weekday!r}")

    @classmethod
    def from_template(cls, template, override=None) -> "TaskDueRule":
        """Build a rule from a service task and an optional per-work override.

        An override that sets any base field replaces the template's whole
        base rule; offset fields are merged one by one.
        """

        def pick(field: str):
            if override is not None and _is_set(getattr(override, field, None)):
                return getattr(override, field)
            return getattr(template, field, None)

        base = template
        if override is not None and any(_is_set(getattr(override, field, None)) for field in BASE_RULE_FIELDS):
            base = override

        return cls(
            exact_date=getattr(base, "exact_due_date", None),
            month=getattr(base, "due_month", None),
            day=getattr(base, "due_day", None),
            weekday=getattr(base, "due_weekday", None) or None,
            offset=DueOffset.parse(pick("due_offset_value"), pick("due_offset_unit")),
        )

    @classmethod
    def period_end(cls, offset_value: Optional[int] = None, offset_unit: Optional[str] = None) -> "TaskDueRule":
        return cls(offset=DueOffset.parse(offset_value, offset_unit))


def _month_day_in_period(month: int, day: int, period: PeriodLike) -> Optional[date]:
    for year in dict.fromkeys((period.start.year, period.end.year)):
        candidate = date(year, month, min(day, last_day_of_month(year, month)))
        if period.start <= candidate <= period.end:
            return candidate
    return None


def resolve_base_date(rule: TaskDueRule, period: PeriodLike) -> Optional[date]:
    if rule.exact_date is not None:
        if period.start <= rule.exact_date <= period.end:
            return rule.exact_date
        return None

    if rule.month is not None:
        return _month_day_in_period(rule.month, rule.day or 1, period)

    if rule.weekday:
        target = weekday_index(rule.weekday)
        return period.start + timedelta(days=(target - period.start.weekday()) % 7)

    if rule.day is not None:
        return period.start + timedelta(days=rule.day - 1)

    return period.end


def resolve_due_date(rule: TaskDueRule, period: PeriodLike) -> Optional[date]:
    """Resolve the due date of ``rule`` for ``period``; ``None`` means not applicable."""
    base = resolve_base_date(rule, period)
    if base is None:
        return None
    return rule.offset.apply(base)
