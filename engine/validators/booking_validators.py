"""
Booking validation functions for therapist scheduling rules.

This module implements the checks that run whenever a therapist is assigned
to a booking (confirm with therapist, manual creation, edit):
- Blockout validation (therapist marked unavailable on the booking date)
- Overlap validation against the therapist's other active bookings that day

Both are pure functions over already-loaded rows; booking_service loads the
therapist and their same-day bookings and raises SchedulingConflictError
with the returned message.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable
from uuid import UUID

from database.models import BookingStatus
from engine.fsm.models import ScheduleSlot

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60

# Bookings in these statuses occupy the therapist's time
ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


def _to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def format_time_12h(value: time) -> str:
    """
    Format a wall-clock time as 12-hour text.

    Example:
        >>> format_time_12h(time(14, 30))
        '2:30 PM'
        >>> format_time_12h(time(0, 5))
        '12:05 AM'
    """
    hour = value.hour % 12 or 12
    suffix = "PM" if value.hour >= 12 else "AM"
    return f"{hour}:{value.minute:02d} {suffix}"


def validate_therapist_blockout(therapist: Any, booking_date: date) -> str | None:
    """
    Check the therapist is not blocked out on `booking_date`.

    Args:
        therapist: Therapist row (uses name and unavailable_dates)
        booking_date: Date of the booking

    Returns:
        Conflict message, or None if the therapist is available.
    """
    blockouts = getattr(therapist, "unavailable_dates", None) or []
    for raw in blockouts:
        try:
            blocked = raw if isinstance(raw, date) else date.fromisoformat(str(raw)[:10])
        except ValueError:
            logger.warning(
                f"Ignoring malformed blockout {raw!r} for therapist {getattr(therapist, 'id', None)}"
            )
            continue
        if blocked == booking_date:
            return f"{therapist.name} is unavailable on {booking_date.isoformat()}"
    return None


def booking_slot(booking: Any) -> ScheduleSlot:
    """Schedule slot occupied by a booking row."""
    service = getattr(booking, "service", None)
    duration = getattr(service, "duration", None) or DEFAULT_DURATION_MINUTES
    label = getattr(service, "title", None) or "Session"
    return ScheduleSlot(
        booking_id=booking.id,
        start=booking.booking_time,
        duration_minutes=duration,
        label=label,
    )


def find_overlaps(
    requested: ScheduleSlot,
    existing: Iterable[ScheduleSlot],
) -> list[ScheduleSlot]:
    """
    Slots in `existing` that overlap `requested`.

    Two slots overlap when each starts before the other ends. The requested
    booking itself (same booking_id) is ignored.
    """
    new_start = _to_minutes(requested.start)
    new_end = new_start + requested.duration_minutes

    overlaps = []
    for slot in existing:
        if requested.booking_id is not None and slot.booking_id == requested.booking_id:
            continue
        start = _to_minutes(slot.start)
        end = start + slot.duration_minutes
        if new_start < end and new_end > start:
            overlaps.append(slot)
    return overlaps


def validate_therapist_time_conflict(
    therapist: Any,
    booking_date: date,
    requested: ScheduleSlot,
    same_day_bookings: Iterable[Any],
) -> str | None:
    """
    Check the therapist has no overlapping active booking on `booking_date`.

    Args:
        therapist: Therapist row (uses id and name)
        booking_date: Date of the requested booking
        requested: Slot being requested
        same_day_bookings: Bookings to check against (filtered here to the
                           therapist, the date and active statuses)

    Returns:
        Conflict message listing the overlapping sessions, or None.
    """
    candidates = [
        booking_slot(b)
        for b in same_day_bookings
        if b.therapist_id == therapist.id
        and b.booking_date == booking_date
        and BookingStatus(b.status) in ACTIVE_STATUSES
    ]
    conflicts = find_overlaps(requested, candidates)
    if not conflicts:
        return None

    details = []
    for slot in conflicts:
        end = (datetime.combine(booking_date, slot.start) + timedelta(minutes=slot.duration_minutes)).time()
        details.append(f"{slot.label} ({format_time_12h(slot.start)} - {format_time_12h(end)})")

    return (
        f"{therapist.name} already has overlapping booking(s) on {booking_date.isoformat()}: "
        f"{'; '.join(details)}. The new {requested.duration_minutes}-minute session at "
        f"{format_time_12h(requested.start)} would overlap."
    )


def validate_therapist_assignment(
    therapist: Any,
    booking_id: UUID | None,
    booking_date: date,
    booking_time: time,
    duration_minutes: int | None,
    same_day_bookings: Iterable[Any],
) -> str | None:
    """
    Run every scheduling check for assigning `therapist`.

    Returns:
        First conflict message, or None if the assignment is valid.
    """
    if therapist is None:
        return "Therapist not found"
    if not getattr(therapist, "active", True):
        return f"{therapist.name} is not active"

    blockout = validate_therapist_blockout(therapist, booking_date)
    if blockout:
        return blockout

    requested = ScheduleSlot(
        booking_id=booking_id,
        start=booking_time,
        duration_minutes=duration_minutes or DEFAULT_DURATION_MINUTES,
    )
    return validate_therapist_time_conflict(therapist, booking_date, requested, same_day_bookings)
