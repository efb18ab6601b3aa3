"""
BookingFSM - Finite State Machine for the booking lifecycle.

This module implements the rules that govern one booking's status:

    pending ──confirm──> confirmed ──complete──> completed
       │                    │
       └──cancel──> cancelled <──cancel──┘
                       │
    pending <──restore─┘

delete is an override from any status; edit is a manual correction from any
status that may also change the status as a side channel.

The FSM never touches the store. It turns (snapshot, action, params) into a
TransitionPlan that booking_service writes as a single conditional update on
the snapshot's status. Guard violations raise before any write.

Key responsibilities:
- Validate that an action is allowed from the current status
- Validate gratuity and edit input
- Compute side-effect data (therapist, completed_at, tip, commission split)
- Report no-ops when required operator input is missing
"""

import inspect
import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, ClassVar

from pydantic import ValidationError as PydanticValidationError

from database.models import Booking, BookingStatus, TipRecipient
from engine.fsm.models import (
    BookingAction,
    BookingEditFields,
    TransitionPlan,
)
from engine.pricing import commission_split, effective_price, to_decimal
from shared.business_time import to_utc
from shared.config import get_settings
from shared.exceptions import InvalidTransition, ValidationError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class BookingFSM:
    """
    Transition planner for bookings.

    Example:
        >>> fsm = BookingFSM()
        >>> plan = fsm.plan(booking, BookingAction.CANCEL)
        >>> plan.expected_status, plan.new_status
        (BookingStatus.PENDING, BookingStatus.CANCELLED)
    """

    # Valid status transitions: from_status -> {action: to_status}
    TRANSITIONS: ClassVar[dict[BookingStatus, dict[BookingAction, BookingStatus]]] = {
        BookingStatus.PENDING: {
            BookingAction.CONFIRM: BookingStatus.CONFIRMED,
            BookingAction.CANCEL: BookingStatus.CANCELLED,
        },
        BookingStatus.CONFIRMED: {
            BookingAction.COMPLETE: BookingStatus.COMPLETED,
            BookingAction.CANCEL: BookingStatus.CANCELLED,
        },
        BookingStatus.CANCELLED: {
            BookingAction.RESTORE: BookingStatus.PENDING,
        },
        BookingStatus.COMPLETED: {},
    }

    # Allowed from every status
    OVERRIDE_ACTIONS: ClassVar[set[BookingAction]] = {
        BookingAction.DELETE,
        BookingAction.EDIT,
    }

    # Statuses that cannot exist without an assigned therapist
    THERAPIST_STATUSES: ClassVar[frozenset[BookingStatus]] = frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.COMPLETED}
    )

    def __init__(self, commission_rate: float | None = None) -> None:
        if commission_rate is None:
            commission_rate = get_settings().COMMISSION_RATE
        self._commission_rate = commission_rate

    @property
    def commission_rate(self) -> float:
        return self._commission_rate

    def can_transition(self, status: BookingStatus, action: BookingAction) -> bool:
        """Whether `action` is allowed from `status`."""
        if action in self.OVERRIDE_ACTIONS:
            return True
        return action in self.TRANSITIONS.get(status, {})

    def _require(self, booking: Booking, action: BookingAction) -> BookingStatus:
        status = BookingStatus(booking.status)
        if not self.can_transition(status, action):
            logger.warning(
                f"Rejected '{action.value}' on booking {booking.id} in status '{status.value}'",
                extra={"booking_id": booking.id, "action": action.value},
            )
            raise InvalidTransition(booking.id, status.value, action.value)
        return status

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def plan(self, booking: Booking, action: BookingAction | str, **params: Any) -> TransitionPlan:
        """
        Plan `action` on `booking`.

        Args:
            booking: Current snapshot of the booking
            action: BookingAction (or its string value)
            **params: Action parameters (see the plan_* methods)

        Raises:
            InvalidTransition: Action not allowed from current status
            ValidationError: Malformed parameters
        """
        try:
            action = BookingAction(action)
        except ValueError as e:
            raise ValidationError(f"Unknown booking action: {action!r}") from e

        handlers = {
            BookingAction.CONFIRM: self.plan_confirm,
            BookingAction.COMPLETE: self.plan_complete,
            BookingAction.CANCEL: self.plan_cancel,
            BookingAction.RESTORE: self.plan_restore,
            BookingAction.DELETE: self.plan_delete,
            BookingAction.EDIT: self.plan_edit,
        }
        handler = handlers[action]
        try:
            inspect.signature(handler).bind(booking, **params)
        except TypeError as e:
            raise ValidationError(f"Invalid parameters for '{action.value}': {e}") from e

        return handler(booking, **params)

    # ------------------------------------------------------------------
    # Lifecycle actions
    # ------------------------------------------------------------------

    def plan_confirm(self, booking: Booking, therapist_id: Any = None) -> TransitionPlan:
        """
        Confirm a pending booking.

        A therapist must be supplied or already assigned. Without one the
        plan is a no-op that names "therapist_id" as missing input.
        """
        status = self._require(booking, BookingAction.CONFIRM)
        therapist = therapist_id or booking.therapist_id

        if therapist is None:
            logger.info(
                f"Confirm on booking {booking.id} waiting for therapist assignment",
                extra={"booking_id": booking.id, "action": "confirm"},
            )
            return TransitionPlan(
                booking_id=booking.id,
                action=BookingAction.CONFIRM,
                expected_status=status,
                applied=False,
                missing_input="therapist_id",
            )

        return TransitionPlan(
            booking_id=booking.id,
            action=BookingAction.CONFIRM,
            expected_status=status,
            new_status=BookingStatus.CONFIRMED,
            values={"status": BookingStatus.CONFIRMED, "therapist_id": therapist},
        )

    def plan_complete(
        self,
        booking: Booking,
        completion_time: datetime | None = None,
        tip_amount: Any = None,
        tip_recipient: Any = None,
    ) -> TransitionPlan:
        """
        Complete a confirmed booking.

        The completion time is never defaulted: without it the plan is a
        no-op naming "completion_time" as missing input, so the operator
        confirms the actual end time first.

        Gratuity: tip defaults to 0; a positive tip needs a recipient and a
        zero tip must not have one.
        """
        status = self._require(booking, BookingAction.COMPLETE)

        tip, recipient = self._validate_tip(tip_amount, tip_recipient)

        if completion_time is None:
            logger.info(
                f"Complete on booking {booking.id} waiting for completion time",
                extra={"booking_id": booking.id, "action": "complete"},
            )
            return TransitionPlan(
                booking_id=booking.id,
                action=BookingAction.COMPLETE,
                expected_status=status,
                applied=False,
                missing_input="completion_time",
            )

        values = {
            "status": BookingStatus.COMPLETED,
            "completed_at": to_utc(completion_time),
            "tip_amount": tip,
            "tip_recipient": recipient,
        }
        values.update(self._completion_pricing(booking))

        return TransitionPlan(
            booking_id=booking.id,
            action=BookingAction.COMPLETE,
            expected_status=status,
            new_status=BookingStatus.COMPLETED,
            values=values,
        )

    def plan_cancel(self, booking: Booking) -> TransitionPlan:
        """Cancel a pending or confirmed booking; therapist assignment is kept."""
        status = self._require(booking, BookingAction.CANCEL)
        return TransitionPlan(
            booking_id=booking.id,
            action=BookingAction.CANCEL,
            expected_status=status,
            new_status=BookingStatus.CANCELLED,
            values={"status": BookingStatus.CANCELLED},
        )

    def plan_restore(self, booking: Booking) -> TransitionPlan:
        """Return a cancelled booking to pending."""
        status = self._require(booking, BookingAction.RESTORE)
        return TransitionPlan(
            booking_id=booking.id,
            action=BookingAction.RESTORE,
            expected_status=status,
            new_status=BookingStatus.PENDING,
            values={"status": BookingStatus.PENDING},
        )

    def plan_delete(self, booking: Booking, confirmed: bool = False) -> TransitionPlan:
        """
        Permanently remove a booking.

        Irreversible, so callers must pass confirmed=True after asking the
        administrator.
        """
        status = self._require(booking, BookingAction.DELETE)
        if confirmed is not True:
            raise ValidationError(
                f"Deleting booking {booking.id} is irreversible and requires explicit confirmation"
            )
        return TransitionPlan(
            booking_id=booking.id,
            action=BookingAction.DELETE,
            expected_status=status,
        )

    def plan_edit(
        self,
        booking: Booking,
        fields: BookingEditFields | dict[str, Any] | None = None,
        service_price: Any = None,
        now: datetime | None = None,
    ) -> TransitionPlan:
        """
        Apply a manual correction.

        Editing into completed stamps `now` as completion time when the
        booking has none and no completed_at is passed (the live complete
        action never defaults it). Editing out of completed clears
        completion time, gratuity and commission split.

        Args:
            booking: Current snapshot
            fields: BookingEditFields or a plain dict of them
            service_price: Price of the (new) service, used to freeze
                           price_at_booking when completing through edit
            now: Clock override for the completion stamp
        """
        status = self._require(booking, BookingAction.EDIT)
        changes = self._parse_edit_fields(fields)
        for required in ("service_id", "booking_date", "booking_time", "status"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"Booking {booking.id}: {required} cannot be cleared")

        new_status = changes.get("status") or status
        therapist_id = changes.get("therapist_id", booking.therapist_id)
        user_id = changes.get("user_id", booking.user_id)
        guest_name = changes.get("guest_name", booking.guest_name)

        if therapist_id is None and new_status in self.THERAPIST_STATUSES:
            raise ValidationError(
                f"Booking {booking.id}: a therapist is required for status '{new_status.value}'"
            )
        if user_id is None and guest_name is None:
            raise ValidationError(
                f"Booking {booking.id}: requester needs an account or a guest name"
            )
        if "completed_at" in changes and new_status != BookingStatus.COMPLETED:
            raise ValidationError(
                f"Booking {booking.id}: completed_at can only be set on completed bookings"
            )

        values: dict[str, Any] = {k: v for k, v in changes.items() if k != "completed_at"}
        values["status"] = new_status

        if new_status == BookingStatus.COMPLETED:
            completed_at = changes.get("completed_at") or booking.completed_at
            if completed_at is None:
                completed_at = now or datetime.now(UTC)
                logger.warning(
                    f"Booking {booking.id} edited into completed without a completion "
                    f"time; stamping {completed_at.isoformat()}",
                    extra={"booking_id": booking.id, "action": "edit"},
                )
            values["completed_at"] = to_utc(completed_at)

            if status != BookingStatus.COMPLETED:
                values["tip_amount"] = ZERO
                values["tip_recipient"] = None
            values.update(self._completion_pricing(booking, service_price))
        else:
            values.update(
                completed_at=None,
                tip_amount=ZERO,
                tip_recipient=None,
                commission_amount=ZERO,
                revenue_amount=ZERO,
            )

        return TransitionPlan(
            booking_id=booking.id,
            action=BookingAction.EDIT,
            expected_status=status,
            new_status=new_status,
            values=values,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_tip(tip_amount: Any, tip_recipient: Any) -> tuple[Decimal, TipRecipient | None]:
        try:
            tip = to_decimal(tip_amount)
        except ArithmeticError as e:
            raise ValidationError(f"Invalid tip amount: {tip_amount!r}") from e

        if tip < 0:
            raise ValidationError(f"Tip amount cannot be negative: {tip}")

        recipient = None
        if tip_recipient is not None:
            try:
                recipient = TipRecipient(tip_recipient)
            except ValueError as e:
                raise ValidationError(
                    f"Tip recipient must be one of {[r.value for r in TipRecipient]}, got {tip_recipient!r}"
                ) from e

        if tip > 0 and recipient is None:
            raise ValidationError("A tip requires a recipient (management or therapist)")
        if tip == 0 and recipient is not None:
            raise ValidationError("A tip recipient was given without a tip amount")

        return tip, recipient

    def _completion_pricing(self, booking: Booking, service_price: Any = None) -> dict[str, Any]:
        if booking.price_at_booking is not None:
            price = to_decimal(booking.price_at_booking)
        elif service_price is not None:
            price = to_decimal(service_price)
        else:
            price = effective_price(booking)

        commission, revenue = commission_split(price, self._commission_rate)
        return {
            "price_at_booking": price,
            "commission_amount": commission,
            "revenue_amount": revenue,
        }

    @staticmethod
    def _parse_edit_fields(fields: BookingEditFields | dict[str, Any] | None) -> dict[str, Any]:
        if fields is None:
            return {}
        if isinstance(fields, BookingEditFields):
            return fields.model_dump(exclude_unset=True)
        try:
            return BookingEditFields.model_validate(fields).model_dump(exclude_unset=True)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid booking edit: {e}") from e
