"""
Booking service - Persisted lifecycle operations for bookings.

This service is the single write path for booking rows:
- create_booking: Public booking flow and manual (admin) entry
- transition_booking: confirm / complete / cancel / restore / delete / edit
- Convenience wrappers per action

Architecture:
- Read a snapshot of the booking (one session, closed before writing)
- Plan the mutation with BookingFSM (guards + side-effect data)
- Run therapist scheduling checks when an assignment is involved
- Write ONE conditional statement: WHERE id = :id AND status = :expected
- Zero affected rows means someone else changed the booking first:
  re-fetch and raise ConcurrentModification (never retry internally)

Store failures surface as PersistenceError; the transaction is rolled back
so prior state is untouched.
"""

import logging
from datetime import UTC, date, datetime, time
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database.connection import get_async_session
from database.models import (
    Booking,
    BookingStatus,
    Profile,
    Service,
    Therapist,
    TherapistFeedback,
)
from engine.fsm.booking_fsm import BookingFSM
from engine.fsm.models import (
    BookingAction,
    BookingEditFields,
    NewBooking,
    TransitionPlan,
    TransitionResult,
)
from engine.validators.booking_validators import ACTIVE_STATUSES, validate_therapist_assignment
from shared.business_time import to_utc
from shared.exceptions import (
    BookingNotFoundError,
    ConcurrentModification,
    PersistenceError,
    SchedulingConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _booking_query():
    return select(Booking).options(
        selectinload(Booking.service),
        selectinload(Booking.therapist),
        selectinload(Booking.profile),
    )


async def _load_booking(session: AsyncSession, booking_id: UUID) -> Booking | None:
    result = await session.execute(
        _booking_query()
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_booking(booking_id: UUID) -> Booking:
    """
    Fetch one booking with service, therapist and profile loaded.

    Raises:
        BookingNotFoundError: No such booking
        PersistenceError: Store failure
    """
    try:
        async with get_async_session() as session:
            booking = await _load_booking(session, booking_id)
    except SQLAlchemyError as e:
        logger.error(f"Error fetching booking {booking_id}: {e}", exc_info=True)
        raise PersistenceError(f"Could not load booking {booking_id}") from e

    if booking is None:
        raise BookingNotFoundError(booking_id)
    return booking


async def list_bookings(statuses: list[BookingStatus] | None = None) -> list[Booking]:
    """
    Point-in-time snapshot of bookings for read models.

    Args:
        statuses: Restrict to these statuses (default: all)

    Returns:
        Bookings ordered by created_at, id (service/therapist/profile loaded)
    """
    stmt = _booking_query().order_by(Booking.created_at.asc(), Booking.id.asc())
    if statuses:
        stmt = stmt.where(Booking.status.in_(statuses))

    try:
        async with get_async_session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
    except SQLAlchemyError as e:
        logger.error(f"Error loading booking snapshot: {e}", exc_info=True)
        raise PersistenceError("Could not load bookings") from e


# ============================================================================
# Scheduling checks
# ============================================================================


async def _check_assignment(
    session: AsyncSession,
    therapist_id: UUID,
    booking_id: UUID | None,
    booking_date: date,
    booking_time: time,
    duration_minutes: int | None,
) -> None:
    therapist = await session.get(Therapist, therapist_id)

    result = await session.execute(
        select(Booking)
        .options(selectinload(Booking.service))
        .where(
            Booking.therapist_id == therapist_id,
            Booking.booking_date == booking_date,
            Booking.status.in_(list(ACTIVE_STATUSES)),
        )
    )
    same_day = list(result.scalars().all())

    conflict = validate_therapist_assignment(
        therapist,
        booking_id,
        booking_date,
        booking_time,
        duration_minutes,
        same_day,
    )
    if conflict:
        logger.warning(
            f"Scheduling conflict for therapist {therapist_id}: {conflict}",
            extra={"booking_id": booking_id},
        )
        raise SchedulingConflictError(conflict)


# ============================================================================
# Creation
# ============================================================================


async def create_booking(data: NewBooking | dict[str, Any], now: datetime | None = None) -> Booking:
    """
    Create a booking (pending, or confirmed when a therapist is supplied).

    Used by the public booking flow (guest or registered requester, with a
    visitor token) and by administrators entering bookings manually (often
    with a therapist already chosen).

    Args:
        data: NewBooking or a dict of its fields
        now: Creation timestamp override

    Returns:
        Persisted Booking with relationships loaded

    Raises:
        ValidationError: Malformed input, unknown service/account, no requester
        SchedulingConflictError: Therapist blocked out or double-booked
        PersistenceError: Store failure
    """
    if not isinstance(data, NewBooking):
        try:
            data = NewBooking.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid booking: {e}") from e

    if data.user_id is None and data.guest_name is None:
        raise ValidationError("A booking needs a registered account or a guest name")

    try:
        async with get_async_session() as session:
            service = await session.get(Service, data.service_id)
            if service is None:
                raise ValidationError(f"Service {data.service_id} not found")

            if data.user_id is not None and await session.get(Profile, data.user_id) is None:
                raise ValidationError(f"Account {data.user_id} not found")

            if data.therapist_id is not None:
                await _check_assignment(
                    session,
                    data.therapist_id,
                    None,
                    data.booking_date,
                    data.booking_time,
                    service.duration,
                )

            booking = Booking(
                **data.model_dump(),
                status=BookingStatus.CONFIRMED if data.therapist_id else BookingStatus.PENDING,
                price_at_booking=service.price,
                created_at=to_utc(now) if now else datetime.now(UTC),
            )
            session.add(booking)
            await session.commit()

            booking = await _load_booking(session, booking.id)

    except SQLAlchemyError as e:
        logger.error(f"Error creating booking: {e}", exc_info=True)
        raise PersistenceError("Could not create booking") from e

    logger.info(
        f"Booking {booking.id} created for {booking.booking_date} {booking.booking_time}",
        extra={"booking_id": booking.id, "action": "create"},
    )
    return booking


# ============================================================================
# Transitions
# ============================================================================


async def _plan_transition(
    booking_id: UUID,
    action: BookingAction,
    fsm: BookingFSM,
    params: dict[str, Any],
) -> tuple[Booking, TransitionPlan]:
    async with get_async_session() as session:
        booking = await _load_booking(session, booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)

        service = booking.service
        if action == BookingAction.EDIT:
            fields = params.get("fields")
            if isinstance(fields, dict):
                try:
                    params["fields"] = fields = BookingEditFields.model_validate(fields)
                except PydanticValidationError as e:
                    raise ValidationError(f"Invalid booking edit: {e}") from e

            new_service_id = fields.service_id if fields is not None else None
            if new_service_id is not None and new_service_id != booking.service_id:
                service = await session.get(Service, new_service_id)
                if service is None:
                    raise ValidationError(f"Service {new_service_id} not found")
                params.setdefault("service_price", service.price)

        plan = fsm.plan(booking, action, **params)

        assigns_therapist = action in (BookingAction.CONFIRM, BookingAction.EDIT)
        if plan.applied and assigns_therapist and plan.new_status in ACTIVE_STATUSES:
            therapist_id = plan.values.get("therapist_id", booking.therapist_id)
            schedule_changed = any(
                key in plan.values and plan.values[key] != getattr(booking, key)
                for key in ("therapist_id", "booking_date", "booking_time", "service_id")
            ) or (plan.new_status != plan.expected_status)

            if therapist_id is not None and schedule_changed:
                await _check_assignment(
                    session,
                    therapist_id,
                    booking.id,
                    plan.values.get("booking_date", booking.booking_date),
                    plan.values.get("booking_time", booking.booking_time),
                    service.duration if service is not None else None,
                )

    return booking, plan


async def _apply_plan(plan: TransitionPlan) -> Booking | None:
    async with get_async_session() as session:
        if plan.action == BookingAction.DELETE:
            await session.execute(
                delete(TherapistFeedback).where(TherapistFeedback.booking_id == plan.booking_id)
            )
            result = await session.execute(
                delete(Booking)
                .where(Booking.id == plan.booking_id, Booking.status == plan.expected_status)
                .execution_options(synchronize_session=False)
            )
        else:
            result = await session.execute(
                update(Booking)
                .where(Booking.id == plan.booking_id, Booking.status == plan.expected_status)
                .values(**plan.values)
                .execution_options(synchronize_session=False)
            )

        if result.rowcount != 1:
            await session.rollback()
            current = await _load_booking(session, plan.booking_id)
            if current is None:
                raise BookingNotFoundError(plan.booking_id)
            logger.warning(
                f"Lost race on booking {plan.booking_id}: expected '{plan.expected_status.value}', "
                f"found '{current.status.value}'",
                extra={"booking_id": plan.booking_id, "action": plan.action.value},
            )
            raise ConcurrentModification(
                plan.booking_id, plan.expected_status.value, current.status.value
            )

        await session.commit()

        if plan.action == BookingAction.DELETE:
            return None
        return await _load_booking(session, plan.booking_id)


async def transition_booking(
    booking_id: UUID,
    action: BookingAction | str,
    fsm: BookingFSM | None = None,
    **params: Any,
) -> TransitionResult:
    """
    Apply a lifecycle action to a booking.

    Args:
        booking_id: Booking to change
        action: confirm | complete | cancel | restore | delete | edit
        fsm: Planner override (e.g. a different commission rate)
        **params: Action parameters:
            confirm:  therapist_id
            complete: completion_time, tip_amount, tip_recipient
            delete:   confirmed=True
            edit:     fields (BookingEditFields or dict), now

    Returns:
        TransitionResult. applied=False with missing_input set when the
        action is waiting for operator input (therapist or completion time).

    Raises:
        InvalidTransition: Action not allowed from the current status
        ValidationError: Malformed input (incl. BookingNotFoundError,
                         SchedulingConflictError)
        ConcurrentModification: Another operator changed the booking first
        PersistenceError: Store failure
    """
    fsm = fsm or BookingFSM()
    try:
        action = BookingAction(action)
    except ValueError as e:
        raise ValidationError(f"Unknown booking action: {action!r}") from e

    try:
        booking, plan = await _plan_transition(booking_id, action, fsm, dict(params))

        if not plan.applied:
            return TransitionResult(
                booking=booking,
                action=action,
                applied=False,
                previous_status=booking.status,
                missing_input=plan.missing_input,
            )

        updated = await _apply_plan(plan)

    except SQLAlchemyError as e:
        logger.error(
            f"Store error during '{action.value}' on booking {booking_id}: {e}",
            exc_info=True,
            extra={"booking_id": booking_id, "action": action.value},
        )
        raise PersistenceError(f"Could not {action.value} booking {booking_id}") from e

    logger.info(
        f"Booking {booking_id}: {action.value} "
        f"({plan.expected_status.value} -> {plan.new_status.value if plan.new_status else 'deleted'})",
        extra={"booking_id": booking_id, "action": action.value},
    )
    return TransitionResult(
        booking=updated,
        action=action,
        applied=True,
        previous_status=plan.expected_status,
    )


async def confirm_booking(booking_id: UUID, therapist_id: UUID | None = None) -> TransitionResult:
    """Confirm a pending booking, assigning `therapist_id` if given."""
    return await transition_booking(booking_id, BookingAction.CONFIRM, therapist_id=therapist_id)


async def complete_booking(
    booking_id: UUID,
    completion_time: datetime | None = None,
    tip_amount: Any = None,
    tip_recipient: Any = None,
) -> TransitionResult:
    """Complete a confirmed booking at the operator-confirmed `completion_time`."""
    return await transition_booking(
        booking_id,
        BookingAction.COMPLETE,
        completion_time=completion_time,
        tip_amount=tip_amount,
        tip_recipient=tip_recipient,
    )


async def cancel_booking(booking_id: UUID) -> TransitionResult:
    """Cancel a pending or confirmed booking."""
    return await transition_booking(booking_id, BookingAction.CANCEL)


async def restore_booking(booking_id: UUID) -> TransitionResult:
    """Return a cancelled booking to pending."""
    return await transition_booking(booking_id, BookingAction.RESTORE)


async def delete_booking(booking_id: UUID, confirmed: bool = False) -> TransitionResult:
    """Permanently delete a booking (requires confirmed=True)."""
    return await transition_booking(booking_id, BookingAction.DELETE, confirmed=confirmed)


async def edit_booking(
    booking_id: UUID,
    fields: BookingEditFields | dict[str, Any],
    now: datetime | None = None,
) -> TransitionResult:
    """Apply a manual correction to a booking."""
    return await transition_booking(booking_id, BookingAction.EDIT, fields=fields, now=now)
