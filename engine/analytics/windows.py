"""
Reporting windows over business dates.

A window is one of:
- trailing N business days ending on the current business date
- an explicit calendar month
- unbounded (everything)

Bounds are inclusive business dates resolved against "today" (the current
business date), so the same window can be evaluated at any instant.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from shared.exceptions import ValidationError


class WindowKind(str, Enum):
    TRAILING_DAYS = "trailing_days"
    CALENDAR_MONTH = "calendar_month"
    UNBOUNDED = "unbounded"


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of business dates."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class RevenueWindow:
    """
    Reporting window for revenue aggregation.

    Build with the classmethods rather than the constructor:
        RevenueWindow.trailing_days(30)
        RevenueWindow.calendar_month(2025, 3)
        RevenueWindow.unbounded()
    """

    kind: WindowKind
    days: int | None = None
    year: int | None = None
    month: int | None = None

    @classmethod
    def trailing_days(cls, days: int) -> "RevenueWindow":
        if days < 1:
            raise ValidationError(f"Trailing window needs at least 1 day, got {days}")
        return cls(kind=WindowKind.TRAILING_DAYS, days=days)

    @classmethod
    def calendar_month(cls, year: int, month: int) -> "RevenueWindow":
        if not 1 <= month <= 12:
            raise ValidationError(f"Month must be 1-12, got {month}")
        return cls(kind=WindowKind.CALENDAR_MONTH, year=year, month=month)

    @classmethod
    def unbounded(cls) -> "RevenueWindow":
        return cls(kind=WindowKind.UNBOUNDED)

    @property
    def label(self) -> str:
        if self.kind == WindowKind.TRAILING_DAYS:
            return f"{self.days}d"
        if self.kind == WindowKind.CALENDAR_MONTH:
            return f"{self.year:04d}-{self.month:02d}"
        return "all"

    def date_range(self, today: date) -> DateRange | None:
        """Inclusive business-date range, or None when unbounded."""
        if self.kind == WindowKind.TRAILING_DAYS:
            return DateRange(today - timedelta(days=self.days - 1), today)
        if self.kind == WindowKind.CALENDAR_MONTH:
            last_day = calendar.monthrange(self.year, self.month)[1]
            return DateRange(date(self.year, self.month, 1), date(self.year, self.month, last_day))
        return None

    def previous_range(self, today: date) -> DateRange | None:
        """The immediately preceding range of identical length (None when unbounded)."""
        current = self.date_range(today)
        if current is None:
            return None
        end = current.start - timedelta(days=1)
        return DateRange(end - timedelta(days=current.days - 1), end)

    def contains(self, day: date | None, today: date) -> bool:
        if day is None:
            return False
        current = self.date_range(today)
        return current is None or day in current
