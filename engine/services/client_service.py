"""
Client service - Loads a point-in-time snapshot and resolves clients.

The client list and the client detail view share one ClientResolver so a
client's booking history always matches the count shown in the list.

Architecture:
- Read-only (no database modifications)
- One session per call; rows are detached plain data after load
- Orphan bookings are logged by the resolver, never raised
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from database.connection import get_async_session
from database.models import Booking, ClientDevice, Profile, Visitor
from engine.clients.models import Client, ClientFilter, ClientSort, ClientStats
from engine.clients.resolver import (
    ClientResolver,
    apply_view,
    bookings_for_client,
    client_stats,
)
from shared.exceptions import OrphanRecord, PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class ClientSnapshot:
    """Rows the resolver works from."""

    profiles: list[Profile] = field(default_factory=list)
    bookings: list[Booking] = field(default_factory=list)
    visitors: list[Visitor] = field(default_factory=list)
    devices: list[ClientDevice] = field(default_factory=list)


async def load_snapshot() -> ClientSnapshot:
    """
    Load profiles, bookings, visitors and devices in one session.

    Raises:
        PersistenceError: Store failure
    """
    try:
        async with get_async_session() as session:
            profiles = (await session.execute(select(Profile))).scalars().all()
            bookings = (
                await session.execute(
                    select(Booking)
                    .options(selectinload(Booking.service), selectinload(Booking.therapist))
                    .order_by(Booking.created_at.asc(), Booking.id.asc())
                )
            ).scalars().all()
            visitors = (await session.execute(select(Visitor))).scalars().all()
            devices = (await session.execute(select(ClientDevice))).scalars().all()
    except SQLAlchemyError as e:
        logger.error(f"Error loading client snapshot: {e}", exc_info=True)
        raise PersistenceError("Could not load client data") from e

    return ClientSnapshot(
        profiles=list(profiles),
        bookings=list(bookings),
        visitors=list(visitors),
        devices=list(devices),
    )


async def resolve_clients(
    client_filter: ClientFilter | None = None,
    sort: ClientSort | str = ClientSort.RECENT,
    resolver: ClientResolver | None = None,
) -> list[Client]:
    """
    Resolve, filter and sort every client.

    Args:
        client_filter: Type and free-text filter (default: everything)
        sort: recent | bookings | name
        resolver: Resolver override (e.g. different client roles)

    Returns:
        Clients in display order
    """
    snapshot = await load_snapshot()
    resolver = resolver or ClientResolver()
    clients = resolver.resolve(
        snapshot.profiles, snapshot.bookings, snapshot.visitors, snapshot.devices
    )
    view = apply_view(clients, client_filter, sort)

    logger.info(
        f"Resolved {len(clients)} clients ({len(view)} shown, {len(resolver.orphans)} orphans)",
        extra={"action": "resolve_clients"},
    )
    return view


async def get_client_stats(now: datetime | None = None) -> ClientStats:
    """Total / registered / unregistered / active-today counts."""
    snapshot = await load_snapshot()
    clients = ClientResolver().resolve(
        snapshot.profiles, snapshot.bookings, snapshot.visitors, snapshot.devices
    )
    return client_stats(clients, now)


async def get_client_bookings(client: Client) -> list[Booking]:
    """
    Booking history of one resolved client, newest booking_date first.

    Uses the same attribution rule as resolve_clients.
    """
    snapshot = await load_snapshot()
    history = bookings_for_client(client, snapshot.bookings)
    logger.info(
        f"Loaded {len(history)} bookings for client {client.key}",
        extra={"client_key": client.key},
    )
    return history


async def find_orphans() -> list[OrphanRecord]:
    """Bookings that no client identity can claim."""
    snapshot = await load_snapshot()
    resolver = ClientResolver()
    resolver.resolve(snapshot.profiles, snapshot.bookings, snapshot.visitors, snapshot.devices)
    return list(resolver.orphans)


def describe_client(client: Client) -> dict[str, Any]:
    """Plain-dict rendering of a client for callers that serialize."""
    return {
        "type": client.type.value,
        "key": client.key,
        "name": client.name,
        "email": client.email,
        "phone": client.phone,
        "role": client.role,
        "booking_count": client.booking_count,
        "last_booking_date": client.last_booking_date.isoformat() if client.last_booking_date else None,
        "last_active": client.last_active.isoformat() if client.last_active else None,
        "visit_count": client.visit_count,
        "device_count": len(client.devices),
        "total_sessions": client.total_sessions,
    }
