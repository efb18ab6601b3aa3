"""
Integration tests for engine/services/revenue_service.py

Reports over a real store snapshot, with completions written through the
booking service.
"""

from datetime import UTC, date, datetime, time
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from database.connection import get_async_session
from database.models import Profile
from engine.analytics import RevenueWindow
from engine.services.booking_service import cancel_booking, complete_booking, create_booking
from engine.services.revenue_service import (
    aggregate_revenue,
    get_commission_summary,
    get_revenue_series,
    get_today_revenue,
    get_visitor_activity,
)
from engine.services.visitor_service import record_visit

MANILA = ZoneInfo("Asia/Manila")
NOW = datetime(2025, 3, 10, 20, 0, tzinfo=MANILA)


@pytest.fixture
async def staff(db):
    async with get_async_session() as session:
        row = Profile(email="desk@example.com", full_name="Front Desk", role="admin")
        session.add(row)
        await session.commit()
    return row


@pytest.fixture
async def ledger(service, therapist, other_therapist, customer, staff):
    """Two completed sessions, one open request and one cancellation."""
    ana = await create_booking(
        {
            "service_id": service.id,
            "user_id": customer.id,
            "therapist_id": therapist.id,
            "booking_date": date(2025, 3, 4),
            "booking_time": time(23, 0),
        },
        now=datetime(2025, 3, 2, 10, 0, tzinfo=UTC),
    )
    await complete_booking(
        ana.id,
        completion_time=datetime(2025, 3, 5, 1, 30, tzinfo=MANILA),  # business date March 4
        tip_amount=200,
        tip_recipient="management",
    )

    desk = await create_booking(
        {
            "service_id": service.id,
            "user_id": staff.id,
            "therapist_id": other_therapist.id,
            "booking_date": date(2025, 3, 5),
            "booking_time": time(18, 0),
        },
        now=datetime(2025, 3, 3, 10, 0, tzinfo=UTC),
    )
    await complete_booking(desk.id, completion_time=datetime(2025, 3, 5, 20, 0, tzinfo=MANILA))

    await create_booking(
        {
            "service_id": service.id,
            "guest_name": "Liza Santos",
            "visitor_token": "tok-liza",
            "booking_date": date(2025, 3, 12),
            "booking_time": time(18, 0),
        },
        now=datetime(2025, 3, 9, 10, 0, tzinfo=UTC),
    )
    lost = await create_booking(
        {
            "service_id": service.id,
            "guest_name": "Liza Santos",
            "visitor_token": "tok-liza",
            "booking_date": date(2025, 3, 11),
            "booking_time": time(18, 0),
        },
        now=datetime(2025, 3, 8, 10, 0, tzinfo=UTC),
    )
    await cancel_booking(lost.id)


class TestAggregateRevenue:
    @pytest.mark.asyncio
    async def test_trailing_week(self, ledger):
        """Seven-day report over stored bookings."""
        report = await aggregate_revenue(RevenueWindow.trailing_days(7), now=NOW)

        assert report.total_revenue == Decimal("2000")
        assert report.pending_revenue == Decimal("1000")
        assert report.lost_revenue == Decimal("1000")
        assert report.completed_count == 2
        assert report.management_tips == Decimal("200")
        assert report.gross_revenue == Decimal("2200")
        assert report.daily_revenue == {date(2025, 3, 4): Decimal("1000"), date(2025, 3, 5): Decimal("1000")}

    @pytest.mark.asyncio
    async def test_non_client_accounts_left_out_of_client_metrics(self, ledger):
        """Staff accounts do not count as clients."""
        report = await aggregate_revenue(RevenueWindow.trailing_days(7), now=NOW)

        # Ana once, tok-liza twice; the front desk booking counts as revenue only
        assert report.total_clients == 2
        assert report.returning_clients == 1
        assert report.retention_rate == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_no_previous_revenue_means_no_trend(self, ledger):
        """Trend is zero when the previous window earned nothing."""
        report = await aggregate_revenue(RevenueWindow.trailing_days(7), now=NOW)
        assert report.previous_revenue == Decimal("0")
        assert report.revenue_trend == 0.0


class TestRevenueViews:
    @pytest.mark.asyncio
    async def test_today(self, ledger):
        """Today's revenue follows the business date."""
        assert await get_today_revenue(now=datetime(2025, 3, 5, 22, 0, tzinfo=MANILA)) == Decimal("1000")
        assert await get_today_revenue(now=NOW) == Decimal("0")

    @pytest.mark.asyncio
    async def test_weekly_series(self, ledger):
        """Weekly buckets are zero-filled and ordered oldest first."""
        series = await get_revenue_series(2, now=NOW)

        assert [(b.start, b.end) for b in series] == [
            (date(2025, 2, 25), date(2025, 3, 3)),
            (date(2025, 3, 4), date(2025, 3, 10)),
        ]
        assert [b.revenue for b in series] == [Decimal("0"), Decimal("2000")]

    @pytest.mark.asyncio
    async def test_commission_summary(self, ledger):
        """Commission summary lists one row per therapist."""
        rows = await get_commission_summary(RevenueWindow.trailing_days(7), now=NOW)

        assert [(r.name, r.sessions, r.commission, r.total_payout) for r in rows] == [
            ("Andrea", 1, Decimal("300"), Decimal("300")),
            ("Maria", 1, Decimal("300"), Decimal("300")),
        ]

    @pytest.mark.asyncio
    async def test_visitor_activity(self, db):
        """Visitor activity only counts visitors seen inside the window."""
        await record_visit("tok-liza", now=datetime(2025, 3, 9, 12, 0, tzinfo=UTC))
        await record_visit("tok-liza", now=datetime(2025, 3, 10, 12, 0, tzinfo=UTC))
        await record_visit("tok-ana", now=datetime(2025, 1, 10, 12, 0, tzinfo=UTC))

        report = await get_visitor_activity(RevenueWindow.trailing_days(7), now=NOW)

        assert report.unique_visitors == 1
        assert report.returning_visitors == 1
        assert report.active_today == 1
