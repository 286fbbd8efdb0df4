"""Injectable time source.

Every "today" and "now" check in the engine goes through a ``Clock`` so that
period-elapsed and overdue decisions can be replayed for any date.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC ``datetime``."""
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock pinned to a given moment; used by tests and the scheduler's ``--date``."""

    def __init__(self, fixed: datetime | date | None = None):
        self._fixed = self._coerce(fixed or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc))

    @staticmethod
    def _coerce(value: datetime | date) -> datetime:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)
        return datetime.combine(value, time(12, 0), tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._fixed

    def set(self, value: datetime | date) -> None:
        self._fixed = self._coerce(value)

    def advance(self, *, days: int = 0, seconds: int = 0) -> datetime:
        self._fixed = self._fixed + timedelta(days=days, seconds=seconds)
        return self._fixed


system_clock = SystemClock()
