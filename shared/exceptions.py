"""
Error taxonomy for the booking and client intelligence engine.

Mutations raise these; reads (client resolution, revenue aggregation) never
raise for missing optional data and only log OrphanRecord descriptions.
"""

from typing import Any


class SpaCoreError(Exception):
    """Base exception for all engine errors."""
    pass


class InvalidTransition(SpaCoreError):
    """Raised when an action is not allowed from the booking's current status."""

    def __init__(self, booking_id: Any, current: str, requested: str):
        self.booking_id = booking_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Booking {booking_id}: cannot '{requested}' from status '{current}'"
        )


class ConcurrentModification(SpaCoreError):
    """Raised when a conditional write lost a race with another operator."""

    def __init__(self, booking_id: Any, expected: str, observed: str | None = None):
        self.booking_id = booking_id
        self.expected = expected
        self.observed = observed
        super().__init__(
            f"Booking {booking_id} changed concurrently: expected status "
            f"'{expected}', found '{observed}'. Refresh and retry."
        )


class PersistenceError(SpaCoreError):
    """Raised when the store is unreachable or rejects a write."""
    pass


class ValidationError(SpaCoreError):
    """Raised for malformed input, before any write is attempted."""
    pass


class BookingNotFoundError(ValidationError):
    """Raised when a booking id does not exist (or was deleted)."""

    def __init__(self, booking_id: Any):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class SchedulingConflictError(ValidationError):
    """Raised when a therapist is blocked out or double-booked."""
    pass


class FeedbackError(ValidationError):
    """Raised when feedback cannot be submitted or edited."""
    pass


class OrphanRecord(SpaCoreError):
    """
    Describes a booking or device with no resolvable identity.

    Never raised out of resolution or aggregation: instances are collected
    and logged so callers can inspect what was excluded.
    """

    def __init__(self, record_type: str, record_id: Any, reason: str):
        self.record_type = record_type
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Orphan {record_type} {record_id}: {reason}")
