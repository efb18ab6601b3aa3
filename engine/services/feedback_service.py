"""
Feedback service - Client reviews of completed sessions.

Rules:
- Feedback is accepted only for a completed booking with a therapist
- One review per booking
- A review may be edited at most once; the first version is kept in
  previous_rating / previous_comment and edited_at records when

The single-edit rule is enforced with a conditional write on edit_count,
so two concurrent edits cannot both succeed.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from database.connection import get_async_session
from database.models import Booking, BookingStatus, Therapist, TherapistFeedback
from shared.business_time import to_utc
from shared.exceptions import BookingNotFoundError, FeedbackError, PersistenceError

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
MAX_EDITS = 1


@dataclass
class TherapistRating:
    """Average rating for one therapist."""

    therapist_id: UUID
    name: str
    average: float
    count: int


def _validate(rating: int, comment: str | None) -> str | None:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise FeedbackError(f"Rating must be a whole number, got {rating!r}")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise FeedbackError(f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}")
    if comment is None:
        return None
    return comment.strip() or None


async def submit_feedback(
    booking_id: UUID,
    rating: int,
    comment: str | None = None,
    now: datetime | None = None,
) -> TherapistFeedback:
    """
    Record a review for a completed booking.

    Raises:
        BookingNotFoundError: No such booking
        FeedbackError: Bad rating, booking not completed, no therapist,
                       or already reviewed
        PersistenceError: Store failure
    """
    comment = _validate(rating, comment)

    try:
        async with get_async_session() as session:
            booking = await session.get(Booking, booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            if booking.status != BookingStatus.COMPLETED:
                raise FeedbackError(
                    f"Booking {booking_id} is '{booking.status}'; only completed sessions can be reviewed"
                )
            if booking.therapist_id is None:
                raise FeedbackError(f"Booking {booking_id} has no therapist to review")

            existing = await session.execute(
                select(TherapistFeedback.id).where(TherapistFeedback.booking_id == booking_id)
            )
            if existing.scalar_one_or_none() is not None:
                raise FeedbackError(f"Booking {booking_id} already has feedback")

            feedback = TherapistFeedback(
                booking_id=booking_id,
                therapist_id=booking.therapist_id,
                rating=rating,
                comment=comment,
                created_at=to_utc(now) if now else datetime.now(UTC),
            )
            session.add(feedback)
            try:
                await session.commit()
            except IntegrityError as e:
                # Unique booking_id: another submission won
                raise FeedbackError(f"Booking {booking_id} already has feedback") from e

    except SQLAlchemyError as e:
        logger.error(f"Error saving feedback for booking {booking_id}: {e}", exc_info=True)
        raise PersistenceError(f"Could not save feedback for booking {booking_id}") from e

    logger.info(
        f"Feedback {rating}/5 recorded for booking {booking_id}",
        extra={"booking_id": booking_id, "action": "feedback"},
    )
    return feedback


async def edit_feedback(
    feedback_id: UUID,
    rating: int,
    comment: str | None = None,
    now: datetime | None = None,
) -> TherapistFeedback:
    """
    Edit a review once, keeping the original values.

    Raises:
        FeedbackError: Bad rating, unknown feedback, or already edited
        PersistenceError: Store failure
    """
    comment = _validate(rating, comment)
    edited_at = to_utc(now) if now else datetime.now(UTC)

    try:
        async with get_async_session() as session:
            feedback = await session.get(TherapistFeedback, feedback_id)
            if feedback is None:
                raise FeedbackError(f"Feedback {feedback_id} not found")
            if feedback.edit_count >= MAX_EDITS:
                raise FeedbackError(f"Feedback {feedback_id} has already been edited")

            result = await session.execute(
                update(TherapistFeedback)
                .where(
                    TherapistFeedback.id == feedback_id,
                    TherapistFeedback.edit_count < MAX_EDITS,
                )
                .values(
                    previous_rating=feedback.rating,
                    previous_comment=feedback.comment,
                    rating=rating,
                    comment=comment,
                    edited_at=edited_at,
                    edit_count=TherapistFeedback.edit_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise FeedbackError(f"Feedback {feedback_id} has already been edited")

            await session.commit()
            await session.refresh(feedback)

    except SQLAlchemyError as e:
        logger.error(f"Error editing feedback {feedback_id}: {e}", exc_info=True)
        raise PersistenceError(f"Could not edit feedback {feedback_id}") from e

    logger.info(
        f"Feedback {feedback_id} edited: {feedback.previous_rating} -> {feedback.rating}",
        extra={"booking_id": feedback.booking_id, "action": "feedback_edit"},
    )
    return feedback


async def get_feedback_for_booking(booking_id: UUID) -> TherapistFeedback | None:
    try:
        async with get_async_session() as session:
            result = await session.execute(
                select(TherapistFeedback).where(TherapistFeedback.booking_id == booking_id)
            )
            return result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Error loading feedback for booking {booking_id}: {e}", exc_info=True)
        raise PersistenceError(f"Could not load feedback for booking {booking_id}") from e


async def therapist_ratings() -> list[TherapistRating]:
    """Average rating and review count per therapist, best rated first."""
    stmt = (
        select(
            Therapist.id,
            Therapist.name,
            func.avg(TherapistFeedback.rating),
            func.count(TherapistFeedback.id),
        )
        .join(TherapistFeedback, TherapistFeedback.therapist_id == Therapist.id)
        .group_by(Therapist.id, Therapist.name)
    )

    try:
        async with get_async_session() as session:
            rows = (await session.execute(stmt)).all()
    except SQLAlchemyError as e:
        logger.error(f"Error loading therapist ratings: {e}", exc_info=True)
        raise PersistenceError("Could not load therapist ratings") from e

    ratings = [
        TherapistRating(
            therapist_id=therapist_id,
            name=name,
            average=round(float(average), 2),
            count=count,
        )
        for therapist_id, name, average, count in rows
    ]
    return sorted(ratings, key=lambda r: (-r.average, -r.count, r.name))
