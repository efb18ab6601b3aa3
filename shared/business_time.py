"""
Business Time Authority - Single Source of Truth for the spa's operating day.

The spa runs an evening-to-early-morning operating window (default 16:00 to
04:00 the next day). Anything that happens after midnight but before the
window opens again belongs to the previous operating day, so a session
completed at 01:30 on March 5 is March 4 business.

ALL code that buckets instants by day (today's revenue, window cutoffs,
"active today") MUST go through business_date() so every view agrees.

Design Principles:
- One fixed named timezone for every wall-clock conversion (settings.TIMEZONE)
- Pure functions: identical inputs always give identical outputs
- Naive datetimes are UTC (the store persists UTC)

Usage:
    from shared.business_time import business_date, OperatingWindow

    business_date(datetime(2025, 3, 4, 17, 30, tzinfo=UTC))  # 16:00-04:00 in Manila
    # -> date(2025, 3, 4)   (01:30 local on March 5)
"""

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from shared.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperatingWindow:
    """
    Daily operating window in local wall-clock hours.

    An end hour lower than the start hour means the window wraps past
    midnight. Equal hours mean the spa is open around the clock.
    """

    start_hour: int
    end_hour: int

    def __post_init__(self) -> None:
        for value in (self.start_hour, self.end_hour):
            if not 0 <= value <= 23:
                raise ValueError(f"Operating window hours must be 0-23, got {value}")

    @property
    def wraps_midnight(self) -> bool:
        return self.end_hour < self.start_hour

    def is_open_at(self, instant: datetime, tz: ZoneInfo | None = None) -> bool:
        """Whether the local wall-clock hour of `instant` falls inside the window."""
        hour = to_local(instant, tz).hour
        if self.start_hour == self.end_hour:
            return True
        if self.wraps_midnight:
            return hour >= self.start_hour or hour < self.end_hour
        return self.start_hour <= hour < self.end_hour


def get_business_timezone() -> ZoneInfo:
    """Timezone all wall-clock conversions use."""
    return ZoneInfo(get_settings().TIMEZONE)


def default_operating_window() -> OperatingWindow:
    """Operating window from settings."""
    settings = get_settings()
    return OperatingWindow(
        start_hour=settings.BUSINESS_DAY_START_HOUR,
        end_hour=settings.BUSINESS_DAY_END_HOUR,
    )


def ensure_aware(instant: datetime) -> datetime:
    """Attach UTC to naive datetimes; aware datetimes are returned unchanged."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant


def to_utc(instant: datetime) -> datetime:
    """Normalize an instant to UTC before it is written to the store."""
    return ensure_aware(instant).astimezone(UTC)


def to_local(instant: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Convert an instant to the business timezone."""
    return ensure_aware(instant).astimezone(tz or get_business_timezone())


def now_local(tz: ZoneInfo | None = None) -> datetime:
    """Current instant in the business timezone."""
    return datetime.now(tz or get_business_timezone())


def business_date(
    instant: datetime,
    window: OperatingWindow | None = None,
    tz: ZoneInfo | None = None,
) -> date:
    """
    Operating-day label for an instant.

    If the local hour is strictly before the window start AND the window
    wraps midnight, the instant belongs to the previous calendar date.
    Otherwise it belongs to its own local calendar date.

    Args:
        instant: Any datetime (naive values are UTC)
        window: Operating window (default: from settings)
        tz: Business timezone (default: from settings)

    Returns:
        Business date

    Example:
        >>> manila = ZoneInfo("Asia/Manila")
        >>> w = OperatingWindow(16, 4)
        >>> business_date(datetime(2025, 3, 5, 1, 30, tzinfo=manila), w, manila)
        datetime.date(2025, 3, 4)
        >>> business_date(datetime(2025, 3, 5, 17, 0, tzinfo=manila), w, manila)
        datetime.date(2025, 3, 5)
    """
    window = window or default_operating_window()
    local = to_local(instant, tz)

    if window.wraps_midnight and local.hour < window.start_hour:
        return local.date() - timedelta(days=1)
    return local.date()


def business_today(
    now: datetime | None = None,
    window: OperatingWindow | None = None,
    tz: ZoneInfo | None = None,
) -> date:
    """Business date of `now` (default: the current instant)."""
    tz = tz or get_business_timezone()
    return business_date(now or now_local(tz), window, tz)


def business_day_bounds(
    day: date,
    window: OperatingWindow | None = None,
    tz: ZoneInfo | None = None,
) -> tuple[datetime, datetime]:
    """
    Half-open instant range [start, end) whose instants map to `day`.

    For a wrapping window the business day starts at the window's start hour
    on `day` and ends at the same hour on the following calendar date. For a
    non-wrapping window it is the local calendar day.

    Example:
        >>> business_day_bounds(date(2025, 3, 4), OperatingWindow(16, 4), manila)
        (datetime(2025, 3, 4, 16, 0, tzinfo=manila), datetime(2025, 3, 5, 16, 0, tzinfo=manila))
    """
    window = window or default_operating_window()
    tz = tz or get_business_timezone()
    boundary = time(window.start_hour) if window.wraps_midnight else time(0)

    start = datetime.combine(day, boundary, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), boundary, tzinfo=tz)
    return start, end


def iter_business_dates(start: date, end: date):
    """Yield every date from `start` to `end` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
