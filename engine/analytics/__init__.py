"""
Revenue and activity aggregation.

Public exports:
    - RevenueAggregator / RevenueReport: windowed revenue statistics
    - RevenueWindow: trailing days, calendar month or unbounded
    - visitor_activity / ActivityReport: visitor and device statistics
"""

from engine.analytics.activity import ActivityReport, visitor_activity
from engine.analytics.revenue import (
    BreakdownRow,
    CommissionRow,
    PeakHour,
    RevenueAggregator,
    RevenueReport,
    SeriesBucket,
    revenue_trend,
)
from engine.analytics.windows import DateRange, RevenueWindow, WindowKind

__all__ = [
    "ActivityReport",
    "BreakdownRow",
    "CommissionRow",
    "DateRange",
    "PeakHour",
    "RevenueAggregator",
    "RevenueReport",
    "RevenueWindow",
    "SeriesBucket",
    "WindowKind",
    "revenue_trend",
    "visitor_activity",
]
