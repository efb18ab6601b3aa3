"""
SQLAlchemy ORM models for the spa's operational tables.

This module defines the tables the engine reads and writes:
- profiles: Registered accounts (customers, therapists, admins)
- services: Treatments with pricing and duration
- therapists: Specialists with blockout dates
- bookings: Reservation requests and their lifecycle state
- visitors: Anonymous visitor tokens and visit counters
- client_devices: Device fingerprints per visitor token / account
- therapist_feedback: One review per completed booking

All models use:
- UUID primary keys (auto-generated), except visitors keyed by token
- TIMESTAMP WITH TIME ZONE for datetime fields (stored as UTC)
- Enums persisted by value ("completed", not "COMPLETED")
"""

from datetime import UTC, date, datetime, time
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    DATE,
    JSON,
    TIME,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class BookingStatus(str, PyEnum):
    """Booking lifecycle status."""

    PENDING = "pending"        # Request received, no specialist confirmed yet
    CONFIRMED = "confirmed"    # Specialist assigned and confirmed
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def __str__(self):
        return self.value


class TipRecipient(str, PyEnum):
    """Who a captured gratuity is attributed to."""

    MANAGEMENT = "management"
    THERAPIST = "therapist"

    def __str__(self):
        return self.value


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


# ============================================================================
# Core Models
# ============================================================================


class Profile(Base):
    """
    Profile model - Registered accounts.

    Only profiles with a client role (see settings.CLIENT_PROFILE_ROLES)
    become registered clients in client resolution.
    """

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default="customer", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=_utcnow, nullable=False
    )

    bookings: Mapped[list["Booking"]] = relationship(
        "Booking", back_populates="profile", foreign_keys="[Booking.user_id]"
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, email='{self.email}', role='{self.role}')>"


class Service(Base):
    """Service model - Treatments offered by the spa."""

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=60, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_service_price_non_negative"),
        CheckConstraint("duration > 0", name="check_service_duration_positive"),
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, title='{self.title}', price={self.price})>"


class Therapist(Base):
    """
    Therapist model - Specialists who perform services.

    unavailable_dates holds ISO dates ("2025-03-04") the therapist is
    blocked out on.
    """

    __tablename__ = "therapists"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )
    unavailable_dates: Mapped[list[str]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), default=list, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=_utcnow, nullable=False
    )

    bookings: Mapped[list["Booking"]] = relationship(
        "Booking", back_populates="therapist", foreign_keys="[Booking.therapist_id]"
    )

    def __repr__(self) -> str:
        return f"<Therapist(id={self.id}, name='{self.name}')>"


class Booking(Base):
    """
    Booking model - Reservation requests with lifecycle state.

    Requester is a registered account (user_id), a guest contact bundle
    (guest_name/email/phone), or both. visitor_token correlates anonymous
    bookings with the visitor/device that made them.

    Status changes go through engine.services.booking_service, which writes
    them as conditional updates on the expected current status.
    """

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Requester
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    guest_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    guest_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    visitor_token: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # What / who / when
    service_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("services.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    therapist_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("therapists.id", ondelete="SET NULL"), nullable=True, index=True
    )
    booking_date: Mapped[date] = mapped_column(DATE, nullable=False, index=True)
    booking_time: Mapped[time] = mapped_column(TIME, nullable=False)

    # Status tracking
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(
            BookingStatus,
            name="booking_status",
            values_callable=_enum_values,
        ),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # Gratuity
    tip_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), nullable=False
    )
    tip_recipient: Mapped[TipRecipient | None] = mapped_column(
        SQLEnum(
            TipRecipient,
            name="tip_recipient",
            values_callable=_enum_values,
        ),
        nullable=True,
    )

    # Pricing snapshot and commission split (set on completion)
    price_at_booking: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    commission_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), nullable=False
    )
    revenue_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=_utcnow, nullable=False, index=True
    )

    # Relationships
    profile: Mapped[Optional["Profile"]] = relationship(
        "Profile", foreign_keys=[user_id], back_populates="bookings"
    )
    service: Mapped["Service"] = relationship("Service", foreign_keys=[service_id])
    therapist: Mapped[Optional["Therapist"]] = relationship(
        "Therapist", foreign_keys=[therapist_id], back_populates="bookings"
    )
    feedback: Mapped[Optional["TherapistFeedback"]] = relationship(
        "TherapistFeedback", back_populates="booking", uselist=False
    )

    __table_args__ = (
        CheckConstraint("tip_amount >= 0", name="check_booking_tip_non_negative"),
        CheckConstraint(
            "(status = 'completed' AND completed_at IS NOT NULL) "
            "OR (status <> 'completed' AND completed_at IS NULL)",
            name="check_booking_completed_at_matches_status",
        ),
        # Therapist day-schedule lookups (overlap checks)
        Index("idx_bookings_therapist_date", "therapist_id", "booking_date"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status='{self.status}', therapist_id={self.therapist_id})>"


# ============================================================================
# Visitor / Device Tracking
# ============================================================================


class Visitor(Base):
    """
    Visitor model - One row per anonymous visitor token.

    Created on first page load, updated (never replaced) afterwards. user_id
    is filled in when an account is later created or used from the device.
    """

    __tablename__ = "visitors"

    visitor_token: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    first_visit: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=_utcnow, nullable=False
    )
    last_visit: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=_utcnow, nullable=False
    )
    visit_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    def __repr__(self) -> str:
        return f"<Visitor(token='{self.visitor_token}', visits={self.visit_count})>"


class ClientDevice(Base):
    """ClientDevice model - Device fingerprint seen for a visitor token or account."""

    __tablename__ = "client_devices"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    visitor_token: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    device_model: Mapped[str] = mapped_column(String(100), default="unknown", nullable=False)
    os_name: Mapped[str] = mapped_column(String(50), default="unknown", nullable=False)
    os_version: Mapped[str] = mapped_column(String(50), default="unknown", nullable=False)
    browser: Mapped[str] = mapped_column(String(50), default="unknown", nullable=False)
    browser_version: Mapped[str] = mapped_column(String(50), default="unknown", nullable=False)
    device_type: Mapped[str] = mapped_column(String(20), default="desktop", nullable=False)

    first_seen: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=_utcnow, nullable=False
    )
    last_seen: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=_utcnow, nullable=False
    )
    session_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "visitor_token", "device_model", "os_name", "os_version",
            "browser", "browser_version", "device_type",
            name="uq_client_devices_fingerprint",
        ),
    )

    def descriptors(self) -> dict[str, Any]:
        return {
            "device_model": self.device_model,
            "os_name": self.os_name,
            "os_version": self.os_version,
            "browser": self.browser,
            "browser_version": self.browser_version,
            "device_type": self.device_type,
        }

    def __repr__(self) -> str:
        return f"<ClientDevice(id={self.id}, token='{self.visitor_token}', type='{self.device_type}')>"


# ============================================================================
# Feedback
# ============================================================================


class TherapistFeedback(Base):
    """
    TherapistFeedback model - Client review of a completed booking.

    One per booking. May be edited once; the pre-edit values are kept in
    previous_rating / previous_comment.
    """

    __tablename__ = "therapist_feedback"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    booking_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    therapist_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("therapists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    previous_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    edited_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    edit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=_utcnow, nullable=False
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="feedback")

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="check_feedback_rating_range"),
        CheckConstraint("edit_count <= 1", name="check_feedback_single_edit"),
    )

    def __repr__(self) -> str:
        return f"<TherapistFeedback(booking_id={self.booking_id}, rating={self.rating})>"
