"""
Revenue & Activity Aggregator - Period-bounded statistics over bookings.

Attribution rules (all dates are business dates from shared.business_time):
- completed revenue counts on the business date of COMPLETION
- pending (pending/confirmed) and lost (cancelled) revenue count on the
  business date of CREATION
- money is only "earned" on completion; pipeline health is tracked by when
  requests arrived

Every sum uses the booking's effective price (engine.pricing). Tips are
reported separately and never change total_revenue; gross_revenue adds the
management share of tips on top.

Pure computations over a point-in-time list of bookings. Missing optional
data (no service, no therapist, no tip) counts as zero/absent.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable
from zoneinfo import ZoneInfo

from database.models import BookingStatus, TipRecipient
from engine.analytics.windows import DateRange, RevenueWindow
from engine.pricing import effective_price, to_decimal
from shared.business_time import (
    OperatingWindow,
    business_date,
    business_today,
    default_operating_window,
    ensure_aware,
    get_business_timezone,
    to_local,
)
from shared.config import get_settings

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENTS = Decimal("0.01")

PENDING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})

UNASSIGNED_KEY = "unassigned"
UNASSIGNED_NAME = "Unassigned"
UNKNOWN_SERVICE = "Unknown"


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _status(booking: Any) -> BookingStatus:
    return BookingStatus(booking.status)


def _tip_recipient(booking: Any) -> TipRecipient | None:
    recipient = getattr(booking, "tip_recipient", None)
    return TipRecipient(recipient) if recipient else None


def _default_client_key(booking: Any) -> str | None:
    if booking.user_id is not None:
        return str(booking.user_id)
    return (booking.visitor_token or "").strip() or None


# ============================================================================
# Report models
# ============================================================================


@dataclass
class BreakdownRow:
    """Count and revenue for one service or therapist."""

    key: str
    name: str
    count: int = 0
    revenue: Decimal = ZERO


@dataclass
class SeriesBucket:
    """One fixed-width chart bucket (inclusive booking_date range)."""

    start: date
    end: date
    revenue: Decimal = ZERO
    bookings: int = 0


@dataclass
class PeakHour:
    hour: int
    count: int


@dataclass
class CommissionRow:
    """What a therapist earned in a window."""

    therapist_key: str
    name: str
    sessions: int = 0
    commission: Decimal = ZERO
    tips: Decimal = ZERO

    @property
    def total_payout(self) -> Decimal:
        return self.commission + self.tips


@dataclass
class RevenueReport:
    """
    Statistics for one window.

    Attributes:
        window: Window label ("30d", "2025-03", "all")
        date_range: Inclusive business dates covered (None when unbounded)
        total_revenue / pending_revenue / lost_revenue: Effective price sums
        *_count: Bookings in each bucket
        average_booking_value: total_revenue / completed_count
        revenue_trend: % change of total_revenue vs the preceding window
        by_service / by_therapist: Completed breakdowns, revenue desc, name asc
    """

    window: str
    date_range: DateRange | None
    total_revenue: Decimal = ZERO
    pending_revenue: Decimal = ZERO
    lost_revenue: Decimal = ZERO
    completed_count: int = 0
    pending_count: int = 0
    cancelled_count: int = 0
    average_booking_value: Decimal = ZERO
    previous_revenue: Decimal = ZERO
    revenue_trend: float = 0.0
    by_service: list[BreakdownRow] = field(default_factory=list)
    by_therapist: list[BreakdownRow] = field(default_factory=list)

    # Gratuity
    management_tips: Decimal = ZERO
    therapist_tips: Decimal = ZERO
    gross_revenue: Decimal = ZERO

    # Home service vs in-spa
    home_revenue: Decimal = ZERO
    in_spa_revenue: Decimal = ZERO
    home_percentage: float = 0.0
    home_count: int = 0

    daily_revenue: dict[date, Decimal] = field(default_factory=dict)
    peak_hours: list[PeakHour] = field(default_factory=list)

    # Clients
    total_clients: int = 0
    returning_clients: int = 0
    retention_rate: float = 0.0
    avg_sessions_per_client: float = 0.0
    avg_lead_time_hours: float = 0.0

    status_counts: dict[str, int] = field(default_factory=dict)


# ============================================================================
# Aggregator
# ============================================================================


class RevenueAggregator:
    """
    Builds revenue reports under one operating window and timezone.

    Usage:
        aggregator = RevenueAggregator()
        report = aggregator.aggregate(bookings, RevenueWindow.trailing_days(30), now=now)
    """

    def __init__(
        self,
        operating_window: OperatingWindow | None = None,
        tz: ZoneInfo | None = None,
        home_keyword: str | None = None,
    ):
        self.operating_window = operating_window or default_operating_window()
        self.tz = tz or get_business_timezone()
        self.home_keyword = (home_keyword or get_settings().HOME_SERVICE_KEYWORD).casefold()

    # ------------------------------------------------------------------
    # Attribution dates
    # ------------------------------------------------------------------

    def _business_date(self, instant: datetime | None) -> date | None:
        if instant is None:
            return None
        return business_date(instant, self.operating_window, self.tz)

    def completion_date(self, booking: Any) -> date | None:
        """Business date a completed booking earns on."""
        return self._business_date(booking.completed_at or booking.created_at)

    def creation_date(self, booking: Any) -> date | None:
        return self._business_date(booking.created_at)

    def attribution_date(self, booking: Any) -> date | None:
        if _status(booking) == BookingStatus.COMPLETED:
            return self.completion_date(booking)
        return self.creation_date(booking)

    def today(self, now: datetime | None = None) -> date:
        return business_today(now, self.operating_window, self.tz)

    def is_home_service(self, booking: Any) -> bool:
        service = getattr(booking, "service", None)
        title = (getattr(service, "title", None) or "").casefold()
        return bool(self.home_keyword) and self.home_keyword in title

    def completed_in(self, bookings: Iterable[Any], date_range: DateRange | None) -> list[Any]:
        return [
            b for b in bookings
            if _status(b) == BookingStatus.COMPLETED
            and (date_range is None or (self.completion_date(b) or date.min) in date_range)
        ]

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def aggregate(
        self,
        bookings: Iterable[Any],
        window: RevenueWindow,
        now: datetime | None = None,
        client_key: Callable[[Any], str | None] | None = None,
    ) -> RevenueReport:
        """
        Produce the full report for `window`.

        Args:
            bookings: Booking snapshot (service/therapist loaded)
            window: Reporting window
            now: Reference instant for "today" (default: current instant)
            client_key: Identity of a booking's client, None for orphans
                        (default: account id, else visitor token)

        Returns:
            RevenueReport
        """
        bookings = list(bookings)
        today = self.today(now)
        current = window.date_range(today)
        client_key = client_key or _default_client_key

        report = RevenueReport(window=window.label, date_range=current)

        in_window = [
            b for b in bookings
            if current is None or (self.attribution_date(b) or date.min) in current
        ]
        completed = [b for b in in_window if _status(b) == BookingStatus.COMPLETED]
        pending = [b for b in in_window if _status(b) in PENDING_STATUSES]
        cancelled = [b for b in in_window if _status(b) == BookingStatus.CANCELLED]

        report.total_revenue = sum((effective_price(b) for b in completed), ZERO)
        report.pending_revenue = sum((effective_price(b) for b in pending), ZERO)
        report.lost_revenue = sum((effective_price(b) for b in cancelled), ZERO)
        report.completed_count = len(completed)
        report.pending_count = len(pending)
        report.cancelled_count = len(cancelled)
        if completed:
            report.average_booking_value = _money(report.total_revenue / len(completed))

        previous = window.previous_range(today)
        if previous is not None:
            report.previous_revenue = sum(
                (effective_price(b) for b in self.completed_in(bookings, previous)), ZERO
            )
            report.revenue_trend = revenue_trend(report.total_revenue, report.previous_revenue)

        report.by_service = self._service_breakdown(completed)
        report.by_therapist = self._therapist_breakdown(completed)

        self._fill_tips(report, completed)
        self._fill_home_split(report, completed)

        daily: dict[date, Decimal] = defaultdict(lambda: ZERO)
        for booking in completed:
            daily[self.completion_date(booking)] += effective_price(booking)
        report.daily_revenue = dict(sorted(daily.items()))

        report.peak_hours = self._peak_hours(completed)
        self._fill_client_metrics(report, in_window, client_key)
        report.avg_lead_time_hours = self._average_lead_time(in_window)
        report.status_counts = dict(sorted(Counter(_status(b).value for b in in_window).items()))

        logger.info(
            f"Revenue report {window.label}: total={report.total_revenue} "
            f"pending={report.pending_revenue} lost={report.lost_revenue} "
            f"trend={report.revenue_trend:.1f}%",
            extra={"window": window.label},
        )
        return report

    def today_revenue(self, bookings: Iterable[Any], now: datetime | None = None) -> Decimal:
        """Completed revenue whose completion business date is today's."""
        today = self.today(now)
        return sum(
            (effective_price(b) for b in self.completed_in(bookings, DateRange(today, today))),
            ZERO,
        )

    def bucket_series(
        self,
        bookings: Iterable[Any],
        buckets: int,
        width_days: int = 7,
        now: datetime | None = None,
    ) -> list[SeriesBucket]:
        """
        Completed bookings bucketed by scheduled booking_date.

        Exactly `buckets` contiguous buckets of `width_days` days, oldest
        first, the last one ending on the current business date. Empty
        buckets are kept with zero values.
        """
        if buckets < 1 or width_days < 1:
            return []

        today = self.today(now)
        series = []
        for i in range(buckets - 1, -1, -1):
            end = today - timedelta(days=i * width_days)
            series.append(SeriesBucket(start=end - timedelta(days=width_days - 1), end=end))

        first_start = series[0].start
        for booking in bookings:
            if _status(booking) != BookingStatus.COMPLETED or booking.booking_date is None:
                continue
            if not first_start <= booking.booking_date <= today:
                continue
            index = (booking.booking_date - first_start).days // width_days
            series[index].revenue += effective_price(booking)
            series[index].bookings += 1

        return series

    def weekly_series(self, bookings: Iterable[Any], weeks: int, now: datetime | None = None) -> list[SeriesBucket]:
        return self.bucket_series(bookings, weeks, width_days=7, now=now)

    def daily_series(self, bookings: Iterable[Any], days: int, now: datetime | None = None) -> list[SeriesBucket]:
        return self.bucket_series(bookings, days, width_days=1, now=now)

    def commission_summary(
        self,
        bookings: Iterable[Any],
        window: RevenueWindow,
        now: datetime | None = None,
    ) -> list[CommissionRow]:
        """Commission and therapist-directed tips per therapist, payout desc."""
        current = window.date_range(self.today(now))
        rows: dict[str, CommissionRow] = {}
        for booking in self.completed_in(bookings, current):
            key, name = _therapist_identity(booking)
            row = rows.setdefault(key, CommissionRow(therapist_key=key, name=name))
            row.sessions += 1
            row.commission += to_decimal(booking.commission_amount)
            if _tip_recipient(booking) == TipRecipient.THERAPIST:
                row.tips += to_decimal(booking.tip_amount)

        return sorted(rows.values(), key=lambda r: (-r.total_payout, r.name, r.therapist_key))

    # ------------------------------------------------------------------
    # Report sections
    # ------------------------------------------------------------------

    @staticmethod
    def _service_breakdown(completed: list[Any]) -> list[BreakdownRow]:
        rows: dict[str, BreakdownRow] = {}
        for booking in completed:
            service = getattr(booking, "service", None)
            key = str(booking.service_id) if booking.service_id else UNKNOWN_SERVICE
            name = getattr(service, "title", None) or UNKNOWN_SERVICE
            row = rows.setdefault(key, BreakdownRow(key=key, name=name))
            row.count += 1
            row.revenue += effective_price(booking)
        return _sort_breakdown(rows.values())

    @staticmethod
    def _therapist_breakdown(completed: list[Any]) -> list[BreakdownRow]:
        rows: dict[str, BreakdownRow] = {}
        for booking in completed:
            key, name = _therapist_identity(booking)
            row = rows.setdefault(key, BreakdownRow(key=key, name=name))
            row.count += 1
            row.revenue += effective_price(booking)
        return _sort_breakdown(rows.values())

    @staticmethod
    def _fill_tips(report: RevenueReport, completed: list[Any]) -> None:
        for booking in completed:
            recipient = _tip_recipient(booking)
            tip = to_decimal(booking.tip_amount)
            if recipient == TipRecipient.MANAGEMENT:
                report.management_tips += tip
            elif recipient == TipRecipient.THERAPIST:
                report.therapist_tips += tip
        report.gross_revenue = report.total_revenue + report.management_tips

    def _fill_home_split(self, report: RevenueReport, completed: list[Any]) -> None:
        home = [b for b in completed if self.is_home_service(b)]
        report.home_count = len(home)
        report.home_revenue = sum((effective_price(b) for b in home), ZERO)
        report.in_spa_revenue = report.total_revenue - report.home_revenue
        if report.total_revenue > 0:
            report.home_percentage = float(report.home_revenue / report.total_revenue * 100)

    def _peak_hours(self, completed: list[Any], top: int = 3) -> list[PeakHour]:
        counts = Counter(
            to_local(b.completed_at or b.created_at, self.tz).hour
            for b in completed
            if (b.completed_at or b.created_at) is not None
        )
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [PeakHour(hour=hour, count=count) for hour, count in ranked[:top]]

    @staticmethod
    def _fill_client_metrics(
        report: RevenueReport,
        in_window: list[Any],
        client_key: Callable[[Any], str | None],
    ) -> None:
        per_client = Counter(key for key in (client_key(b) for b in in_window) if key is not None)
        report.total_clients = len(per_client)
        report.returning_clients = sum(1 for count in per_client.values() if count > 1)
        if per_client:
            report.retention_rate = report.returning_clients / report.total_clients * 100
            report.avg_sessions_per_client = round(sum(per_client.values()) / report.total_clients, 1)

    def _average_lead_time(self, in_window: list[Any]) -> float:
        """Mean hours between booking creation and the scheduled start (positive only)."""
        lead_times = []
        for booking in in_window:
            if booking.created_at is None or booking.booking_date is None or booking.booking_time is None:
                continue
            scheduled = datetime.combine(booking.booking_date, booking.booking_time, tzinfo=self.tz)
            hours = (scheduled - ensure_aware(booking.created_at)).total_seconds() / 3600
            if hours > 0:
                lead_times.append(hours)
        if not lead_times:
            return 0.0
        return round(sum(lead_times) / len(lead_times), 1)


def revenue_trend(current: Decimal, previous: Decimal) -> float:
    """
    Percentage change from `previous` to `current`; 0 when nothing was
    earned before.

    Example:
        >>> revenue_trend(Decimal("1500"), Decimal("1000"))
        50.0
    """
    if previous <= 0:
        return 0.0
    return float((current - previous) / previous * 100)


def _therapist_identity(booking: Any) -> tuple[str, str]:
    if booking.therapist_id is None:
        return UNASSIGNED_KEY, UNASSIGNED_NAME
    therapist = getattr(booking, "therapist", None)
    return str(booking.therapist_id), getattr(therapist, "name", None) or UNASSIGNED_NAME


def _sort_breakdown(rows: Iterable[BreakdownRow]) -> list[BreakdownRow]:
    return sorted(rows, key=lambda r: (-r.revenue, r.name, r.key))
