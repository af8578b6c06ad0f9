"""
Payroll cutoff calendar.

A billing cycle ends on a cutoff day.  MONTHLY calendars have one cutoff day
per month; SEMI_MONTHLY calendars have two (the classic 15th / 30th payroll).
Days past the end of a short month clamp to its last day, so a 30th cutoff
falls on Feb 28/29.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from enum import Enum

from epp_kernel.exceptions import ConfigurationError


class CutoffFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    SEMI_MONTHLY = "SEMI_MONTHLY"


@dataclass(frozen=True)
class CutoffCalendar:
    frequency: CutoffFrequency = CutoffFrequency.MONTHLY
    cutoff_days: tuple[int, ...] = (30,)

    def __post_init__(self) -> None:
        expected = 1 if self.frequency == CutoffFrequency.MONTHLY else 2
        if len(self.cutoff_days) != expected:
            raise ConfigurationError(
                f"{self.frequency.value} calendar needs {expected} cutoff day(s), "
                f"got {list(self.cutoff_days)}",
                key="cutoff_days",
            )
        if any(d < 1 or d > 31 for d in self.cutoff_days):
            raise ConfigurationError(
                f"Cutoff days must be within 1..31, got {list(self.cutoff_days)}",
                key="cutoff_days",
            )
        if list(self.cutoff_days) != sorted(set(self.cutoff_days)):
            raise ConfigurationError(
                "Cutoff days must be strictly increasing", key="cutoff_days",
            )

    @classmethod
    def monthly(cls, day: int = 30) -> CutoffCalendar:
        return cls(CutoffFrequency.MONTHLY, (day,))

    @classmethod
    def semi_monthly(cls, first: int = 15, second: int = 30) -> CutoffCalendar:
        return cls(CutoffFrequency.SEMI_MONTHLY, (first, second))

    def _cutoffs_in_month(self, year: int, month: int) -> list[date]:
        last_day = calendar.monthrange(year, month)[1]
        days = sorted({min(d, last_day) for d in self.cutoff_days})
        return [date(year, month, d) for d in days]

    def next_cutoff(self, after: date) -> date:
        """First cutoff strictly after ``after``."""
        year, month = after.year, after.month
        while True:
            for cutoff in self._cutoffs_in_month(year, month):
                if cutoff > after:
                    return cutoff
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)

    def advance(self, start: date, cycles: int) -> list[date]:
        """The next ``cycles`` cutoffs after ``start``, in order."""
        result: list[date] = []
        current = start
        for _ in range(cycles):
            current = self.next_cutoff(current)
            result.append(current)
        return result
