"""
Data models for client identity resolution.

A Client is a derived view: one logical person assembled from profiles,
bookings, visitor rows and device rows. Nothing here is persisted.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from uuid import UUID


class ClientType(str, Enum):
    """How a client was identified."""

    REGISTERED = "registered"  # Keyed by account id
    UNREGISTERED = "unregistered"  # Keyed by visitor token


class ClientSort(str, Enum):
    """Sort orders for the client list. Ties always break on key ascending."""

    RECENT = "recent"  # last_active desc
    BOOKINGS = "bookings"  # booking_count desc
    NAME = "name"  # name asc (case-insensitive)


@dataclass
class ClientFilter:
    """
    Client list filter.

    Attributes:
        type: Restrict to one client type (None = all)
        search: Case-insensitive substring over name, email, phone and key
    """

    type: ClientType | None = None
    search: str | None = None


@dataclass(frozen=True)
class DeviceSummary:
    """Device fingerprint attached to a client."""

    id: UUID
    device_model: str
    os_name: str
    os_version: str
    browser: str
    browser_version: str
    device_type: str
    session_count: int
    last_seen: datetime | None


@dataclass
class Client:
    """
    One distinguishable person.

    Attributes:
        type: registered or unregistered
        key: Account id (as text) or visitor token
        name: Display name (full name, email, or "Guest")
        email / phone: Contact details, first non-empty value wins
        role: Profile role (registered clients only)
        created_at: Account creation, or first booking for guests
        booking_count: Bookings attributed to this client
        last_booking_date: Latest scheduled booking_date
        last_active: Latest visit, device sighting, booking creation or
                     account creation linked to the identity
        visit_count: Page loads across linked visitor tokens
        devices: Linked devices, most recently seen first
    """

    type: ClientType
    key: str
    name: str
    email: str | None = None
    phone: str | None = None
    role: str | None = None
    created_at: datetime | None = None
    booking_count: int = 0
    last_booking_date: date | None = None
    last_active: datetime | None = None
    visit_count: int = 0
    devices: list[DeviceSummary] = field(default_factory=list)

    @property
    def total_sessions(self) -> int:
        return sum(device.session_count for device in self.devices)


@dataclass
class ClientStats:
    """Headline counts for the client list."""

    total: int
    registered: int
    unregistered: int
    active_today: int
