from __future__ import annotations

from enum import Enum


class RecurrencePattern(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    YEARLY = "yearly"
    NONE = "none"


class PeriodType(str, Enum):
    PREVIOUS_PERIOD = "previous_period"
    CURRENT_PERIOD = "current_period"
    NEXT_PERIOD = "next_period"

    @property
    def shift(self) -> int:
        return {"previous_period": -1, "current_period": 0, "next_period": 1}[self.value]


class PeriodStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class WorkStatus(str, Enum):
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


class OffsetUnit(str, Enum):
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# Legacy spellings still found in imported data.
PATTERN_ALIASES = {
    "half-yearly": RecurrencePattern.HALF_YEARLY,
    "halfyearly": RecurrencePattern.HALF_YEARLY,
    "one-time": RecurrencePattern.NONE,
    "": RecurrencePattern.NONE,
}
