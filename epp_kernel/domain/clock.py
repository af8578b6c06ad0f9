"""
Injectable time source.

Approval timeouts, cutoff dates, deduction dates and ledger timestamps all
come from a ``Clock`` passed to the service that needs it; nothing in the
kernel calls ``datetime.now()`` directly.  ``SystemClock`` is the only
implementation that reads the wall clock.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

# Tests and local runs start here unless told otherwise.
DEFAULT_FIXED_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are taken as UTC already; SQLite drops tzinfo on the way
    back from the database.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(ABC):
    """Source of the current instant, always timezone-aware."""

    @abstractmethod
    def now(self) -> datetime: ...

    def now_utc(self) -> datetime:
        return ensure_utc(self.now())

    def today(self) -> date:
        """Calendar date in UTC; cutoffs and payroll dates use this."""
        return self.now_utc().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Timeout tests move it forward in whole days: a level created at
    ``now()`` with ``timeout_days=3`` is overdue after ``advance_days(3)``.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = ensure_utc(fixed_time or DEFAULT_FIXED_TIME)

    def now(self) -> datetime:
        return self._current

    def advance_days(self, days: int) -> None:
        self._current += timedelta(days=days)
