"""
Client identity resolution.

Public exports:
    - ClientResolver: Builds Client records from raw rows
    - apply_view / sort_key / client_stats / bookings_for_client: list views
    - Client, ClientType, ClientSort, ClientFilter, ClientStats: data models
"""

from engine.clients.models import (
    Client,
    ClientFilter,
    ClientSort,
    ClientStats,
    ClientType,
    DeviceSummary,
)
from engine.clients.resolver import (
    ClientResolver,
    apply_view,
    bookings_for_client,
    client_stats,
    sort_key,
)

__all__ = [
    "Client",
    "ClientFilter",
    "ClientResolver",
    "ClientSort",
    "ClientStats",
    "ClientType",
    "DeviceSummary",
    "apply_view",
    "bookings_for_client",
    "client_stats",
    "sort_key",
]
