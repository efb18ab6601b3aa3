"""
FSM module for the booking lifecycle.

Public exports:
    - BookingFSM: Transition planner (guards + side-effect data)
    - BookingAction: Enum of operator actions
    - TransitionPlan: Planned conditional write
    - TransitionResult: Outcome returned by booking_service
    - BookingEditFields: Validated edit input
    - NewBooking: Validated creation input
"""

from engine.fsm.booking_fsm import BookingFSM
from engine.fsm.models import (
    BookingAction,
    BookingEditFields,
    NewBooking,
    ScheduleSlot,
    TransitionPlan,
    TransitionResult,
)

__all__ = [
    "BookingAction",
    "BookingEditFields",
    "BookingFSM",
    "NewBooking",
    "ScheduleSlot",
    "TransitionPlan",
    "TransitionResult",
]
