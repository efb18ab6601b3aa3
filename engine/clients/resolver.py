"""
Client Identity Resolver - One logical client per distinguishable person.

Sources (already loaded rows, any objects with the same attributes work):
- profiles: registered accounts; only client roles are seeded
- bookings: carry an account id, a visitor token, or both
- visitors: visitor token rows with last_visit / visit_count
- devices: device fingerprints linked by account id or visitor token

Resolution rules:
1. One registered client per client-role profile, keyed by account id
2. Bookings with that account id are attributed to it
3. Bookings without an account id but with a visitor token are grouped into
   one unregistered client per token; guest contact details merge in
   creation order (first non-empty value wins, later values fill gaps)
4. last_active is the latest of visits, device sightings, booking creation
   and (registered only) account creation
5. Devices attach by account id, or by visitor token when they have none

Bookings that cannot be attributed are orphans: collected on the resolver,
logged at WARNING and excluded. Identity is never inferred from matching
emails or names. The same inputs always give the same output.
"""

import logging
from datetime import UTC, date, datetime
from typing import Any, Callable, Iterable

from engine.clients.models import (
    Client,
    ClientFilter,
    ClientSort,
    ClientStats,
    ClientType,
    DeviceSummary,
)
from shared.business_time import OperatingWindow, business_date, business_today, ensure_aware
from shared.config import get_settings
from shared.exceptions import OrphanRecord

logger = logging.getLogger(__name__)

GUEST_NAME = "Guest"
UNKNOWN_NAME = "Unknown"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _latest(*instants: datetime | None) -> datetime | None:
    present = [ensure_aware(i) for i in instants if i is not None]
    return max(present) if present else None


def _creation_order(booking: Any) -> tuple:
    created = getattr(booking, "created_at", None)
    return (ensure_aware(created) if created else _EPOCH, str(booking.id))


def _device_summary(device: Any) -> DeviceSummary:
    return DeviceSummary(
        id=device.id,
        device_model=device.device_model or "unknown",
        os_name=device.os_name or "unknown",
        os_version=device.os_version or "unknown",
        browser=device.browser or "unknown",
        browser_version=device.browser_version or "unknown",
        device_type=device.device_type or "desktop",
        session_count=device.session_count or 0,
        last_seen=ensure_aware(device.last_seen) if device.last_seen else None,
    )


def _sorted_devices(devices: Iterable[Any]) -> list[DeviceSummary]:
    summaries = [_device_summary(d) for d in devices]
    # Most recently seen first, id for a stable order
    summaries.sort(key=lambda d: str(d.id))
    summaries.sort(key=lambda d: d.last_seen or _EPOCH, reverse=True)
    return summaries


class ClientResolver:
    """
    Builds client records from raw rows.

    Usage:
        resolver = ClientResolver()
        clients = resolver.resolve(profiles, bookings, visitors, devices)
        resolver.orphans  # bookings that were excluded, with reasons
    """

    def __init__(self, client_roles: Iterable[str] | None = None):
        if client_roles is None:
            client_roles = get_settings().client_profile_roles
        self.client_roles = frozenset(role.lower() for role in client_roles)
        self.orphans: list[OrphanRecord] = []

    def is_client_profile(self, profile: Any) -> bool:
        return (getattr(profile, "role", None) or "").lower() in self.client_roles

    def _orphan(self, booking: Any, reason: str) -> None:
        orphan = OrphanRecord("booking", booking.id, reason)
        self.orphans.append(orphan)
        logger.warning(str(orphan), extra={"booking_id": booking.id, "record_type": "booking"})

    def resolve(
        self,
        profiles: Iterable[Any],
        bookings: Iterable[Any],
        visitors: Iterable[Any] = (),
        devices: Iterable[Any] = (),
    ) -> list[Client]:
        """
        Resolve every client.

        Returns:
            Clients ordered by key ascending (use apply_view for display order).
        """
        self.orphans = []
        visitors = list(visitors)
        devices = list(devices)

        clients: dict[str, Client] = {}
        for profile in profiles:
            if not self.is_client_profile(profile):
                continue
            key = str(profile.id)
            clients[key] = Client(
                type=ClientType.REGISTERED,
                key=key,
                name=_text(profile.full_name) or _text(profile.email) or UNKNOWN_NAME,
                email=_text(profile.email),
                role=profile.role,
                created_at=ensure_aware(profile.created_at) if profile.created_at else None,
                last_active=ensure_aware(profile.created_at) if profile.created_at else None,
            )

        guests: dict[str, Client] = {}
        for booking in sorted(bookings, key=_creation_order):
            if booking.user_id is not None:
                client = clients.get(str(booking.user_id))
                if client is None:
                    self._orphan(booking, f"account {booking.user_id} is not a client profile")
                    continue
                # Registered clients only borrow a phone number from bookings
                client.phone = client.phone or _text(booking.guest_phone)
            elif _text(booking.visitor_token):
                token = _text(booking.visitor_token)
                client = guests.get(token)
                if client is None:
                    client = guests[token] = Client(
                        type=ClientType.UNREGISTERED,
                        key=token,
                        name=GUEST_NAME,
                        created_at=ensure_aware(booking.created_at) if booking.created_at else None,
                    )
                self._merge_guest_contact(client, booking)
            else:
                self._orphan(booking, "no account id and no visitor token")
                continue

            client.booking_count += 1
            if client.last_booking_date is None or booking.booking_date > client.last_booking_date:
                client.last_booking_date = booking.booking_date
            client.last_active = _latest(client.last_active, booking.created_at)

        clients.update(guests)

        for client in clients.values():
            self._attach_activity(client, visitors, devices)

        if self.orphans:
            logger.info(f"Client resolution excluded {len(self.orphans)} orphan booking(s)")

        return [clients[key] for key in sorted(clients)]

    @staticmethod
    def _merge_guest_contact(client: Client, booking: Any) -> None:
        name = _text(booking.guest_name)
        if name and client.name == GUEST_NAME:
            client.name = name
        client.email = client.email or _text(booking.guest_email)
        client.phone = client.phone or _text(booking.guest_phone)

    @staticmethod
    def _attach_activity(client: Client, visitors: list[Any], devices: list[Any]) -> None:
        if client.type == ClientType.REGISTERED:
            linked_visitors = [v for v in visitors if v.user_id is not None and str(v.user_id) == client.key]
            linked_devices = [d for d in devices if d.user_id is not None and str(d.user_id) == client.key]
        else:
            linked_visitors = [v for v in visitors if v.visitor_token == client.key]
            linked_devices = [d for d in devices if d.user_id is None and d.visitor_token == client.key]

        client.visit_count = sum(v.visit_count or 0 for v in linked_visitors)
        client.devices = _sorted_devices(linked_devices)
        client.last_active = _latest(
            client.last_active,
            *(v.last_visit for v in linked_visitors),
            *(d.last_seen for d in linked_devices),
        )


# ============================================================================
# Views: filter, sort, stats, booking history
# ============================================================================


def _recent_key(client: Client) -> tuple:
    last_active = client.last_active or _EPOCH
    return (-ensure_aware(last_active).timestamp(), client.key)


def _bookings_key(client: Client) -> tuple:
    return (-client.booking_count, client.key)


def _name_key(client: Client) -> tuple:
    return ((client.name or "").casefold(), client.key)


SORT_KEYS: dict[ClientSort, Callable[[Client], tuple]] = {
    ClientSort.RECENT: _recent_key,
    ClientSort.BOOKINGS: _bookings_key,
    ClientSort.NAME: _name_key,
}


def sort_key(sort: ClientSort | str) -> Callable[[Client], tuple]:
    """Key function for a sort order (usable with sorted())."""
    return SORT_KEYS[ClientSort(sort)]


def matches_filter(client: Client, client_filter: ClientFilter | None) -> bool:
    if client_filter is None:
        return True
    if client_filter.type is not None and client.type != ClientType(client_filter.type):
        return False

    term = (client_filter.search or "").strip().casefold()
    if not term:
        return True
    haystack = (client.name, client.email, client.phone, client.key)
    return any(term in (value or "").casefold() for value in haystack)


def apply_view(
    clients: Iterable[Client],
    client_filter: ClientFilter | None = None,
    sort: ClientSort | str = ClientSort.RECENT,
) -> list[Client]:
    """Filter then sort resolved clients."""
    selected = [c for c in clients if matches_filter(c, client_filter)]
    return sorted(selected, key=sort_key(sort))


def client_stats(
    clients: Iterable[Client],
    now: datetime | None = None,
    window: OperatingWindow | None = None,
) -> ClientStats:
    """
    Headline counts. "Active today" means last_active falls on the current
    business date.
    """
    clients = list(clients)
    today = business_today(now, window)
    return ClientStats(
        total=len(clients),
        registered=sum(1 for c in clients if c.type == ClientType.REGISTERED),
        unregistered=sum(1 for c in clients if c.type == ClientType.UNREGISTERED),
        active_today=sum(
            1 for c in clients
            if c.last_active is not None and business_date(c.last_active, window) == today
        ),
    )


def belongs_to(client: Client, booking: Any) -> bool:
    """Whether `booking` is attributed to `client` under the resolution rules."""
    if client.type == ClientType.REGISTERED:
        return booking.user_id is not None and str(booking.user_id) == client.key
    return booking.user_id is None and _text(booking.visitor_token) == client.key


def bookings_for_client(client: Client, bookings: Iterable[Any]) -> list[Any]:
    """Booking history of one client, newest booking_date first."""
    history = [b for b in bookings if belongs_to(client, b)]
    history.sort(key=_creation_order, reverse=True)
    history.sort(key=lambda b: (b.booking_date or date.min, b.booking_time), reverse=True)
    return history


def booking_client_key(booking: Any, registered_keys: set[str] | None = None) -> str | None:
    """
    Identity key a booking is attributed to, or None for orphans.

    Args:
        booking: Booking row
        registered_keys: Keys of resolved registered clients; when given,
                         bookings on other accounts are orphans
    """
    if booking.user_id is not None:
        key = str(booking.user_id)
        if registered_keys is not None and key not in registered_keys:
            return None
        return key
    return _text(booking.visitor_token)
