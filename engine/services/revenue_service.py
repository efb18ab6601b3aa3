"""
Revenue service - Loads booking snapshots and runs the aggregator.

Client-based metrics (retention, sessions per client) use the same identity
rule as the client list: bookings on non-client accounts and bookings with
no identity are left out of those metrics, but still count as revenue.
"""

import logging
from datetime import datetime
from decimal import Decimal

from engine.analytics.activity import ActivityReport, visitor_activity
from engine.analytics.revenue import (
    CommissionRow,
    RevenueAggregator,
    RevenueReport,
    SeriesBucket,
)
from engine.analytics.windows import RevenueWindow
from engine.clients.models import ClientType
from engine.clients.resolver import ClientResolver, booking_client_key
from engine.services.client_service import load_snapshot

logger = logging.getLogger(__name__)


async def aggregate_revenue(
    window: RevenueWindow,
    now: datetime | None = None,
    aggregator: RevenueAggregator | None = None,
) -> RevenueReport:
    """
    Revenue report for `window` over the current store contents.

    Args:
        window: Reporting window
        now: Reference instant for "today" (default: current instant)
        aggregator: Aggregator override (operating window, timezone)

    Raises:
        PersistenceError: Store failure
    """
    snapshot = await load_snapshot()
    aggregator = aggregator or RevenueAggregator()

    clients = ClientResolver().resolve(snapshot.profiles, snapshot.bookings)
    registered_keys = {c.key for c in clients if c.type == ClientType.REGISTERED}

    return aggregator.aggregate(
        snapshot.bookings,
        window,
        now=now,
        client_key=lambda booking: booking_client_key(booking, registered_keys),
    )


async def get_today_revenue(now: datetime | None = None) -> Decimal:
    """Completed revenue for the current business date."""
    snapshot = await load_snapshot()
    return RevenueAggregator().today_revenue(snapshot.bookings, now)


async def get_revenue_series(
    buckets: int,
    width_days: int = 7,
    now: datetime | None = None,
) -> list[SeriesBucket]:
    """Zero-filled chart series (weekly by default)."""
    snapshot = await load_snapshot()
    return RevenueAggregator().bucket_series(snapshot.bookings, buckets, width_days, now)


async def get_commission_summary(
    window: RevenueWindow,
    now: datetime | None = None,
) -> list[CommissionRow]:
    """Per-therapist commission and tips for `window`."""
    snapshot = await load_snapshot()
    return RevenueAggregator().commission_summary(snapshot.bookings, window, now)


async def get_visitor_activity(
    window: RevenueWindow | None = None,
    now: datetime | None = None,
) -> ActivityReport:
    """Visitor analytics for `window` (default: unbounded)."""
    snapshot = await load_snapshot()
    return visitor_activity(snapshot.visitors, snapshot.devices, window, now)
