"""
FSM data models for the booking lifecycle.

This module defines the core data structures used by BookingFSM:
- BookingAction: Enum of operator actions on a booking
- TransitionPlan: What a single conditional write must do (computed, not applied)
- TransitionResult: Outcome returned to callers after the write
- BookingEditFields: Validated field set accepted by the edit action
- NewBooking: Validated input for creating a booking
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from database.models import Booking, BookingStatus


class BookingAction(str, Enum):
    """Actions an operator can take on a booking."""

    CONFIRM = "confirm"
    COMPLETE = "complete"
    CANCEL = "cancel"
    RESTORE = "restore"
    DELETE = "delete"  # Override from any state, irreversible
    EDIT = "edit"  # Manual correction, any state


@dataclass
class TransitionPlan:
    """
    Planned mutation of one booking.

    Attributes:
        booking_id: Booking being changed
        action: Action that produced the plan
        expected_status: Status the write is conditional on
        new_status: Status after the write (None for delete)
        values: Column values to write
        applied: False when the action is a no-op waiting for input
        missing_input: Name of the parameter the caller must supply first
    """

    booking_id: UUID
    action: BookingAction
    expected_status: BookingStatus
    new_status: BookingStatus | None = None
    values: dict[str, Any] = field(default_factory=dict)
    applied: bool = True
    missing_input: str | None = None


@dataclass
class TransitionResult:
    """
    Result of a booking transition.

    Attributes:
        booking: Booking as persisted after the write (the unchanged snapshot
                 for no-ops, None after delete)
        action: Action requested
        applied: Whether anything was written
        previous_status: Status before the action
        missing_input: Parameter required before the action can apply
    """

    booking: Booking | None
    action: BookingAction
    applied: bool
    previous_status: BookingStatus
    missing_input: str | None = None


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class BookingEditFields(BaseModel):
    """
    Fields an administrator may change through the edit action.

    Only fields that were explicitly passed are applied
    (model_dump(exclude_unset=True)); passing None clears a field.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: UUID | None = None
    guest_name: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None
    service_id: UUID | None = None
    therapist_id: UUID | None = None
    booking_date: date | None = None
    booking_time: time | None = None
    status: BookingStatus | None = None
    completed_at: datetime | None = None

    @field_validator("guest_name", "guest_email", "guest_phone", mode="before")
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)


class NewBooking(BaseModel):
    """Input for creating a booking from the public flow or manual entry."""

    model_config = ConfigDict(extra="forbid")

    service_id: UUID
    booking_date: date
    booking_time: time
    user_id: UUID | None = None
    guest_name: str | None = Field(default=None, max_length=200)
    guest_email: str | None = Field(default=None, max_length=255)
    guest_phone: str | None = Field(default=None, max_length=50)
    therapist_id: UUID | None = None
    visitor_token: str | None = Field(default=None, max_length=64)

    @field_validator("guest_name", "guest_email", "guest_phone", "visitor_token", mode="before")
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)


@dataclass
class ScheduleSlot:
    """Start time and duration of a booking on a therapist's day."""

    booking_id: UUID | None
    start: time
    duration_minutes: int
    label: str = "Session"
