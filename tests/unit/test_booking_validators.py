"""
Unit tests for engine/validators/booking_validators.py

Tests therapist scheduling checks:
- Blockout dates
- Overlap with the therapist's other active bookings
- Inactive / missing therapist
"""

from datetime import date, time
from types import SimpleNamespace
from uuid import uuid4

import pytest

from engine.fsm import ScheduleSlot
from engine.validators import (
    find_overlaps,
    format_time_12h,
    validate_therapist_assignment,
    validate_therapist_blockout,
)

DAY = date(2025, 3, 10)


@pytest.fixture
def therapist():
    return SimpleNamespace(id=uuid4(), name="Maria", active=True, unavailable_dates=["2025-03-12"])


def _booking(therapist, start, duration=60, status="confirmed", day=DAY, booking_id=None):
    return SimpleNamespace(
        id=booking_id or uuid4(),
        therapist_id=therapist.id,
        booking_date=day,
        booking_time=start,
        status=status,
        service=SimpleNamespace(title="Swedish Massage", duration=duration),
    )


class TestFormatTime:
    @pytest.mark.parametrize(
        "value,expected",
        [(time(14, 30), "2:30 PM"), (time(0, 5), "12:05 AM"), (time(12, 0), "12:00 PM")],
    )
    def test_format(self, value, expected):
        """12-hour display of session times."""
        assert format_time_12h(value) == expected


class TestBlockout:
    def test_blocked_date(self, therapist):
        """A blocked-out date produces an error message."""
        message = validate_therapist_blockout(therapist, date(2025, 3, 12))
        assert "Maria is unavailable on 2025-03-12" in message

    def test_free_date(self, therapist):
        """Dates outside the blockout list pass."""
        assert validate_therapist_blockout(therapist, DAY) is None

    def test_malformed_entries_are_ignored(self, therapist):
        """Malformed blockout entries are skipped; full timestamps still match."""
        therapist.unavailable_dates = ["not-a-date", "2025-03-10T00:00:00"]
        assert validate_therapist_blockout(therapist, DAY) is not None


class TestOverlaps:
    def test_back_to_back_sessions_do_not_overlap(self):
        """Sessions that touch end to start do not overlap."""
        requested = ScheduleSlot(booking_id=None, start=time(19, 0), duration_minutes=60)
        existing = [ScheduleSlot(booking_id=uuid4(), start=time(18, 0), duration_minutes=60)]
        assert find_overlaps(requested, existing) == []

    def test_partial_overlap(self):
        """Partially overlapping sessions conflict."""
        requested = ScheduleSlot(booking_id=None, start=time(18, 30), duration_minutes=60)
        existing = [ScheduleSlot(booking_id=uuid4(), start=time(18, 0), duration_minutes=60)]
        assert len(find_overlaps(requested, existing)) == 1

    def test_same_booking_is_ignored(self):
        """A booking never conflicts with itself."""
        booking_id = uuid4()
        requested = ScheduleSlot(booking_id=booking_id, start=time(18, 0), duration_minutes=60)
        existing = [ScheduleSlot(booking_id=booking_id, start=time(18, 0), duration_minutes=60)]
        assert find_overlaps(requested, existing) == []


class TestAssignment:
    def test_valid_assignment(self, therapist):
        """A free active therapist passes."""
        same_day = [_booking(therapist, time(16, 0))]
        assert validate_therapist_assignment(therapist, None, DAY, time(17, 0), 60, same_day) is None

    def test_overlap_message(self, therapist):
        """Overlap errors name the conflicting time."""
        same_day = [_booking(therapist, time(18, 0), duration=90)]
        message = validate_therapist_assignment(therapist, None, DAY, time(19, 0), 60, same_day)
        assert "Maria already has overlapping booking(s)" in message
        assert "Swedish Massage (6:00 PM - 7:30 PM)" in message

    def test_cancelled_and_completed_do_not_block(self, therapist):
        """Cancelled and completed sessions leave the slot free."""
        same_day = [
            _booking(therapist, time(18, 0), status="cancelled"),
            _booking(therapist, time(18, 0), status="completed"),
        ]
        assert validate_therapist_assignment(therapist, None, DAY, time(18, 0), 60, same_day) is None

    def test_default_duration_when_missing(self, therapist):
        """Missing durations fall back to the default length."""
        same_day = [_booking(therapist, time(18, 0))]
        message = validate_therapist_assignment(therapist, None, DAY, time(18, 45), None, same_day)
        assert "60-minute session" in message

    def test_blockout_checked(self, therapist):
        """Assignment checks the blockout list."""
        message = validate_therapist_assignment(therapist, None, date(2025, 3, 12), time(18, 0), 60, [])
        assert "unavailable" in message

    def test_inactive(self, therapist):
        """Inactive therapists cannot be assigned."""
        therapist.active = False
        assert "not active" in validate_therapist_assignment(therapist, None, DAY, time(18, 0), 60, [])

    def test_missing(self):
        """A missing therapist is reported."""
        assert validate_therapist_assignment(None, None, DAY, time(18, 0), 60, []) == "Therapist not found"
