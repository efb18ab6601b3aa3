"""Visitor and device activity statistics."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from engine.analytics.windows import RevenueWindow
from shared.business_time import OperatingWindow, business_date, business_today

logger = logging.getLogger(__name__)


@dataclass
class ActivityReport:
    """
    Visitor analytics for a window.

    Device and browser breakdowns are weighted by session_count, most
    used first.
    """

    window: str
    unique_visitors: int = 0
    returning_visitors: int = 0
    return_rate: float = 0.0
    total_visits: int = 0
    avg_visits_per_visitor: float = 0.0
    active_today: int = 0
    device_types: list[tuple[str, int]] = field(default_factory=list)
    browsers: list[tuple[str, int]] = field(default_factory=list)


def _ranked(counts: Counter) -> list[tuple[str, int]]:
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def visitor_activity(
    visitors: Iterable[Any],
    devices: Iterable[Any] = (),
    window: RevenueWindow | None = None,
    now: datetime | None = None,
    operating_window: OperatingWindow | None = None,
) -> ActivityReport:
    """
    Summarize visitors last seen inside `window` (default: unbounded).

    A visitor is returning when visit_count > 1.
    """
    window = window or RevenueWindow.unbounded()
    today = business_today(now, operating_window)

    def in_window(instant: datetime | None) -> bool:
        if instant is None:
            return False
        return window.contains(business_date(instant, operating_window), today)

    selected = [v for v in visitors if in_window(v.last_visit)]
    report = ActivityReport(window=window.label)
    report.unique_visitors = len(selected)
    report.returning_visitors = sum(1 for v in selected if (v.visit_count or 0) > 1)
    report.total_visits = sum(v.visit_count or 0 for v in selected)
    report.active_today = sum(
        1 for v in selected if business_date(v.last_visit, operating_window) == today
    )
    if selected:
        report.return_rate = round(report.returning_visitors / report.unique_visitors * 100, 1)
        report.avg_visits_per_visitor = round(report.total_visits / report.unique_visitors, 1)

    device_types: Counter = Counter()
    browsers: Counter = Counter()
    for device in devices:
        if not in_window(device.last_seen):
            continue
        sessions = device.session_count or 0
        device_types[device.device_type or "desktop"] += sessions
        browsers[device.browser or "Other"] += sessions

    report.device_types = _ranked(device_types)
    report.browsers = _ranked(browsers)

    logger.debug(
        f"Activity {window.label}: {report.unique_visitors} visitors, "
        f"{report.returning_visitors} returning",
        extra={"window": window.label},
    )
    return report
