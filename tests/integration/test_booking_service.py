"""
Integration tests for engine/services/booking_service.py

Tests cover:
- Creation (pending, or confirmed when a therapist is supplied) with a frozen price
- Confirm / complete no-ops while operator input is missing
- Completion with gratuity and commission split
- Cancel and restore keep the therapist assignment
- Hard delete requires confirmation and removes the review
- Manual edits, including into and out of completed
- Therapist scheduling conflicts (blockout and overlap)
- Conditional writes: a stale snapshot loses to a concurrent change
"""

from datetime import UTC, date, datetime, time
from decimal import Decimal
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from database.models import BookingStatus, TipRecipient
from engine.fsm import BookingFSM
from engine.services.booking_service import (
    _apply_plan,
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
from engine.services.feedback_service import get_feedback_for_booking, submit_feedback
from shared.business_time import ensure_aware
from shared.exceptions import (
    BookingNotFoundError,
    ConcurrentModification,
    InvalidTransition,
    SchedulingConflictError,
    ValidationError,
)

MANILA = ZoneInfo("Asia/Manila")
CREATED = datetime(2025, 3, 1, 10, 0, tzinfo=UTC)
FINISHED = datetime(2025, 3, 5, 1, 30, tzinfo=MANILA)


async def _book(service, therapist=None, **overrides):
    data = {
        "service_id": service.id,
        "booking_date": date(2025, 3, 4),
        "booking_time": time(18, 0),
        "guest_name": "Liza Santos",
        "guest_phone": "+63 917 555 0101",
        "visitor_token": "tok-liza",
    }
    if therapist is not None:
        data["therapist_id"] = therapist.id
    data.update(overrides)
    return await create_booking(data, now=CREATED)


class TestCreateBooking:
    @pytest.mark.asyncio
    async def test_guest_request_is_pending(self, service):
        """A guest request starts pending with the service price frozen."""
        booking = await _book(service)

        assert booking.status == BookingStatus.PENDING
        assert booking.therapist_id is None
        assert booking.price_at_booking == Decimal("1000.00")
        assert ensure_aware(booking.created_at) == CREATED
        assert booking.service.title == "Swedish Massage"

    @pytest.mark.asyncio
    async def test_manual_entry_with_therapist_is_confirmed(self, service, therapist):
        """Supplying a therapist at creation confirms the booking immediately."""
        booking = await _book(service, therapist)

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.therapist.name == "Maria"

    @pytest.mark.asyncio
    async def test_registered_requester(self, service, customer):
        """A registered account can book without guest details."""
        booking = await _book(service, user_id=customer.id, guest_name=None, visitor_token=None)
        assert booking.user_id == customer.id
        assert booking.profile.full_name == "Ana Reyes"

    @pytest.mark.asyncio
    async def test_requester_required(self, service):
        """A blank guest name with no account is rejected."""
        with pytest.raises(ValidationError, match="registered account or a guest name"):
            await _book(service, guest_name="   ")

    @pytest.mark.asyncio
    async def test_unknown_service(self, db):
        """Booking a service that does not exist fails."""
        with pytest.raises(ValidationError, match="not found"):
            await create_booking(
                {
                    "service_id": uuid4(),
                    "booking_date": date(2025, 3, 4),
                    "booking_time": time(18, 0),
                    "guest_name": "Liza",
                }
            )

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, service):
        """Unexpected creation fields are rejected."""
        with pytest.raises(ValidationError):
            await _book(service, discount="50%")

    @pytest.mark.asyncio
    async def test_blocked_out_therapist(self, service, other_therapist):
        """A therapist cannot be booked on a blocked-out date."""
        with pytest.raises(SchedulingConflictError, match="unavailable"):
            await _book(service, other_therapist, booking_date=date(2025, 3, 10))

    @pytest.mark.asyncio
    async def test_double_booked_therapist(self, service, therapist):
        """Overlapping sessions for one therapist are refused and nothing is written."""
        await _book(service, therapist)

        with pytest.raises(SchedulingConflictError, match="overlapping"):
            await _book(service, therapist, booking_time=time(18, 30), visitor_token="tok-other")

        assert len(await list_bookings()) == 1


class TestConfirm:
    @pytest.mark.asyncio
    async def test_without_therapist_is_a_no_op(self, service):
        """Confirm without a therapist leaves the booking pending."""
        booking = await _book(service)

        result = await confirm_booking(booking.id)

        assert result.applied is False
        assert result.missing_input == "therapist_id"
        assert (await get_booking(booking.id)).status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_assigns_therapist(self, service, therapist):
        """Confirm assigns the therapist and moves to confirmed."""
        booking = await _book(service)

        result = await confirm_booking(booking.id, therapist.id)

        assert result.applied is True
        assert result.previous_status == BookingStatus.PENDING
        assert result.booking.status == BookingStatus.CONFIRMED
        assert result.booking.therapist_id == therapist.id

    @pytest.mark.asyncio
    async def test_confirmed_cannot_be_confirmed_again(self, service, therapist):
        """Confirming twice is an invalid transition."""
        booking = await _book(service, therapist)

        with pytest.raises(InvalidTransition):
            await confirm_booking(booking.id, therapist.id)


class TestComplete:
    @pytest.mark.asyncio
    async def test_without_completion_time_is_a_no_op(self, service, therapist):
        """Complete without a completion time leaves the booking confirmed."""
        booking = await _book(service, therapist)

        result = await complete_booking(booking.id)

        assert result.applied is False
        assert result.missing_input == "completion_time"
        assert (await get_booking(booking.id)).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_records_tip_and_commission(self, service, therapist):
        """Completion stores the tip and the 30/70 commission split."""
        booking = await _book(service, therapist)

        result = await complete_booking(
            booking.id, completion_time=FINISHED, tip_amount="200", tip_recipient="therapist"
        )
        completed = result.booking

        assert completed.status == BookingStatus.COMPLETED
        assert ensure_aware(completed.completed_at) == FINISHED
        assert completed.tip_amount == Decimal("200")
        assert completed.tip_recipient == TipRecipient.THERAPIST
        assert completed.commission_amount == Decimal("300")
        assert completed.revenue_amount == Decimal("700")

    @pytest.mark.asyncio
    async def test_tip_without_recipient_rejected(self, service, therapist):
        """A tip needs a recipient; the booking stays confirmed."""
        booking = await _book(service, therapist)

        with pytest.raises(ValidationError, match="recipient"):
            await complete_booking(booking.id, completion_time=FINISHED, tip_amount=100)

        assert (await get_booking(booking.id)).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_pending_cannot_be_completed(self, service):
        """Pending bookings must be confirmed before completion."""
        booking = await _book(service)

        with pytest.raises(InvalidTransition):
            await complete_booking(booking.id, completion_time=FINISHED)


class TestCancelRestore:
    @pytest.mark.asyncio
    async def test_round_trip_keeps_therapist(self, service, therapist):
        """Cancel then restore keeps the therapist and clears completion data."""
        booking = await _book(service, therapist)

        cancelled = (await cancel_booking(booking.id)).booking
        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.therapist_id == therapist.id

        restored = (await restore_booking(booking.id)).booking
        assert restored.status == BookingStatus.PENDING
        assert restored.therapist_id == therapist.id
        assert restored.completed_at is None
        assert restored.tip_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_completed_cannot_be_cancelled(self, service, therapist):
        """Completed bookings are not cancellable."""
        booking = await _book(service, therapist)
        await complete_booking(booking.id, completion_time=FINISHED)

        with pytest.raises(InvalidTransition):
            await cancel_booking(booking.id)

    @pytest.mark.asyncio
    async def test_restore_only_from_cancelled(self, service):
        """Restore is refused unless the booking is cancelled."""
        booking = await _book(service)

        with pytest.raises(InvalidTransition):
            await restore_booking(booking.id)


class TestDelete:
    @pytest.mark.asyncio
    async def test_requires_confirmation(self, service):
        """Delete without explicit confirmation keeps the row."""
        booking = await _book(service)

        with pytest.raises(ValidationError, match="explicit confirmation"):
            await delete_booking(booking.id)

        assert (await get_booking(booking.id)).id == booking.id

    @pytest.mark.asyncio
    async def test_removes_booking_and_review(self, service, therapist):
        """Hard delete removes the booking together with its review."""
        booking = await _book(service, therapist)
        await complete_booking(booking.id, completion_time=FINISHED)
        await submit_feedback(booking.id, 5)

        result = await delete_booking(booking.id, confirmed=True)

        assert result.applied is True
        assert result.booking is None
        assert result.previous_status == BookingStatus.COMPLETED
        with pytest.raises(BookingNotFoundError):
            await get_booking(booking.id)
        assert await get_feedback_for_booking(booking.id) is None

    @pytest.mark.asyncio
    async def test_deleted_booking_cannot_be_transitioned(self, service):
        """Actions on a deleted booking report it as not found."""
        booking = await _book(service)
        await delete_booking(booking.id, confirmed=True)

        with pytest.raises(BookingNotFoundError):
            await cancel_booking(booking.id)


class TestEdit:
    @pytest.mark.asyncio
    async def test_correct_contact_and_time(self, service):
        """Manual edit updates guest details and time without changing status."""
        booking = await _book(service)

        result = await edit_booking(
            booking.id, {"guest_name": "Liza S.", "booking_time": time(19, 30)}
        )

        assert result.booking.guest_name == "Liza S."
        assert result.booking.booking_time == time(19, 30)
        assert result.booking.status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancelled_without_therapist_accepts_contact_fix(self, service):
        """A booking cancelled while still pending accepts contact corrections."""
        booking = await _book(service)
        await cancel_booking(booking.id)

        result = await edit_booking(booking.id, {"guest_phone": "0917 555 0199"})

        assert result.applied is True
        assert result.booking.status == BookingStatus.CANCELLED
        assert result.booking.guest_phone == "0917 555 0199"
        assert result.booking.therapist_id is None

    @pytest.mark.asyncio
    async def test_cancelled_without_therapist_reopened_as_pending(self, service):
        """A cancelled booking with no therapist can be edited back to pending."""
        booking = await _book(service)
        await cancel_booking(booking.id)

        result = await edit_booking(booking.id, {"status": "pending"})

        assert result.booking.status == BookingStatus.PENDING
        assert result.booking.therapist_id is None

    @pytest.mark.asyncio
    async def test_edit_into_completed_and_back(self, service, therapist):
        """Editing into completed computes commission; editing out clears it."""
        booking = await _book(service, therapist)

        completed = (
            await edit_booking(booking.id, {"status": "completed", "completed_at": FINISHED})
        ).booking
        assert completed.status == BookingStatus.COMPLETED
        assert ensure_aware(completed.completed_at) == FINISHED
        assert completed.commission_amount == Decimal("300")

        reopened = (await edit_booking(booking.id, {"status": "confirmed"})).booking
        assert reopened.status == BookingStatus.CONFIRMED
        assert reopened.completed_at is None
        assert reopened.commission_amount == Decimal("0")
        assert reopened.revenue_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_edit_into_completed_stamps_now(self, service, therapist):
        """Editing into completed with no time stamps the current instant."""
        booking = await _book(service, therapist)

        result = await edit_booking(booking.id, {"status": "completed"}, now=FINISHED)

        assert ensure_aware(result.booking.completed_at) == FINISHED

    @pytest.mark.asyncio
    async def test_service_change_keeps_frozen_price(self, service, home_service, therapist):
        """Changing the service keeps the price frozen at creation."""
        booking = await _book(service, therapist)

        result = await edit_booking(
            booking.id, {"service_id": home_service.id, "status": "completed", "completed_at": FINISHED}
        )

        assert result.booking.service.title == "Home Service Shiatsu"
        # Price frozen at creation is kept
        assert result.booking.price_at_booking == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_clearing_requester_rejected(self, service):
        """An edit cannot leave the booking without a requester."""
        booking = await _book(service)

        with pytest.raises(ValidationError, match="requester"):
            await edit_booking(booking.id, {"guest_name": "  "})

    @pytest.mark.asyncio
    async def test_unknown_service_rejected(self, service):
        """Editing to a missing service fails."""
        booking = await _book(service)

        with pytest.raises(ValidationError, match="not found"):
            await edit_booking(booking.id, {"service_id": uuid4()})

    @pytest.mark.asyncio
    async def test_moving_into_overlap_rejected(self, service, therapist):
        """Moving a session onto another one for the same therapist is refused."""
        await _book(service, therapist)
        later = await _book(service, therapist, booking_time=time(20, 0), visitor_token="tok-2")

        with pytest.raises(SchedulingConflictError):
            await edit_booking(later.id, {"booking_time": time(18, 30)})

        assert (await get_booking(later.id)).booking_time == time(20, 0)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_stale_snapshot_loses(self, service, therapist):
        """A plan built before a concurrent cancel is not applied."""
        booking = await _book(service, therapist)
        snapshot = await get_booking(booking.id)
        plan = BookingFSM().plan(snapshot, "complete", completion_time=FINISHED)

        await cancel_booking(booking.id)

        with pytest.raises(ConcurrentModification) as exc_info:
            await _apply_plan(plan)

        assert exc_info.value.expected == "confirmed"
        assert exc_info.value.observed == "cancelled"
        assert (await get_booking(booking.id)).status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_double_complete_applies_once(self, service, therapist):
        """Two completes planned from one snapshot apply exactly once."""
        booking = await _book(service, therapist)
        snapshot = await get_booking(booking.id)
        fsm = BookingFSM()
        first = fsm.plan(
            snapshot, "complete", completion_time=FINISHED, tip_amount=100, tip_recipient="management"
        )
        second = fsm.plan(
            snapshot, "complete", completion_time=FINISHED, tip_amount=300, tip_recipient="therapist"
        )

        applied = await _apply_plan(first)
        with pytest.raises(ConcurrentModification) as exc_info:
            await _apply_plan(second)

        assert applied.status == BookingStatus.COMPLETED
        assert exc_info.value.expected == "confirmed"
        assert exc_info.value.observed == "completed"

        final = await get_booking(booking.id)
        assert final.status == BookingStatus.COMPLETED
        assert final.tip_amount == Decimal("100")
        assert final.tip_recipient == TipRecipient.MANAGEMENT

    @pytest.mark.asyncio
    async def test_stale_delete_loses(self, service):
        """A delete planned against an old status does not remove the row."""
        booking = await _book(service)
        snapshot = await get_booking(booking.id)
        plan = BookingFSM().plan(snapshot, "delete", confirmed=True)

        await cancel_booking(booking.id)

        with pytest.raises(ConcurrentModification):
            await _apply_plan(plan)
        assert (await get_booking(booking.id)).status == BookingStatus.CANCELLED


class TestLookup:
    @pytest.mark.asyncio
    async def test_unknown_booking(self, db):
        """Unknown booking ids raise BookingNotFoundError."""
        with pytest.raises(BookingNotFoundError):
            await cancel_booking(uuid4())

    @pytest.mark.asyncio
    async def test_unknown_action(self, service):
        """Unknown action names are rejected."""
        booking = await _book(service)

        with pytest.raises(ValidationError, match="Unknown booking action"):
            await transition_booking(booking.id, "archive")

    @pytest.mark.asyncio
    async def test_list_by_status(self, service, therapist):
        """Listing can be narrowed to given statuses."""
        await _book(service)
        confirmed = await _book(service, therapist, booking_time=time(20, 0), visitor_token="tok-2")

        listed = await list_bookings([BookingStatus.CONFIRMED])

        assert [b.id for b in listed] == [confirmed.id]
