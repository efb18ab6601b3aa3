"""
Engine services module.

Provides the persisted operations of the engine.

Services:
- booking_service: Booking creation and lifecycle transitions (conditional writes)
- client_service: Client resolution over a store snapshot
- revenue_service: Revenue reports, chart series and commission summaries
- feedback_service: Session reviews with a single edit
- visitor_service: Visit and device tracking
"""

from engine.services.booking_service import (
    cancel_booking,
    complete_booking,
    confirm_booking,
    create_booking,
    delete_booking,
    edit_booking,
    get_booking,
    list_bookings,
    restore_booking,
    transition_booking,
)
from engine.services.client_service import (
    get_client_bookings,
    get_client_stats,
    resolve_clients,
)
from engine.services.feedback_service import (
    edit_feedback,
    submit_feedback,
    therapist_ratings,
)
from engine.services.revenue_service import (
    aggregate_revenue,
    get_commission_summary,
    get_revenue_series,
    get_today_revenue,
    get_visitor_activity,
)
from engine.services.visitor_service import record_device, record_visit

__all__ = [
    "aggregate_revenue",
    "cancel_booking",
    "complete_booking",
    "confirm_booking",
    "create_booking",
    "delete_booking",
    "edit_booking",
    "edit_feedback",
    "get_booking",
    "get_client_bookings",
    "get_client_stats",
    "get_commission_summary",
    "get_revenue_series",
    "get_today_revenue",
    "get_visitor_activity",
    "list_bookings",
    "record_device",
    "record_visit",
    "resolve_clients",
    "restore_booking",
    "submit_feedback",
    "therapist_ratings",
    "transition_booking",
]
