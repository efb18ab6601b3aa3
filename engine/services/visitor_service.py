"""
Visitor service - Visit and device tracking for client identity.

record_visit() runs on every page load for a visitor token and
record_device() once per session with the parsed user agent. Both are
upserts: rows are created on first sight and updated (never replaced)
afterwards, so first_visit / first_seen survive and counters only grow.
"""

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Uuid, func, literal, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from database.connection import get_async_session
from database.models import ClientDevice, Visitor
from shared.business_time import to_utc
from shared.exceptions import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

# Descriptor -> default when the user agent did not reveal it
DEVICE_DESCRIPTORS = {
    "device_model": "unknown",
    "os_name": "unknown",
    "os_version": "unknown",
    "browser": "unknown",
    "browser_version": "unknown",
    "device_type": "desktop",
}

DEVICE_TYPES = frozenset({"mobile", "tablet", "desktop"})


def normalize_descriptors(descriptors: dict[str, Any] | None) -> dict[str, str]:
    """
    Fill missing descriptors with defaults and reject unknown keys.

    Example:
        >>> normalize_descriptors({"browser": "Safari", "device_type": "Mobile"})["device_type"]
        'mobile'
    """
    descriptors = dict(descriptors or {})
    unknown = set(descriptors) - set(DEVICE_DESCRIPTORS)
    if unknown:
        raise ValidationError(f"Unknown device descriptor(s): {', '.join(sorted(unknown))}")

    normalized = {}
    for key, default in DEVICE_DESCRIPTORS.items():
        value = descriptors.get(key)
        value = str(value).strip() if value is not None else ""
        normalized[key] = value or default

    normalized["device_type"] = normalized["device_type"].lower()
    if normalized["device_type"] not in DEVICE_TYPES:
        normalized["device_type"] = DEVICE_DESCRIPTORS["device_type"]
    return normalized


def _token(visitor_token: str | None) -> str | None:
    token = (visitor_token or "").strip()
    if len(token) > 64:
        raise ValidationError("Visitor token is longer than 64 characters")
    return token or None


async def _bump_visit(session, token: str, user_id: UUID | None, seen_at: datetime) -> int:
    values: dict[str, Any] = {
        "visit_count": Visitor.visit_count + 1,
        "last_visit": seen_at,
    }
    if user_id is not None:
        values["user_id"] = func.coalesce(Visitor.user_id, literal(user_id, Uuid))

    result = await session.execute(
        update(Visitor)
        .where(Visitor.visitor_token == token)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def record_visit(
    visitor_token: str,
    user_id: UUID | None = None,
    now: datetime | None = None,
) -> Visitor:
    """
    Create or update the visitor row for a page load.

    Increments visit_count, bumps last_visit and links user_id the first
    time an account is seen on the token (an existing link is kept).

    Raises:
        ValidationError: Empty or oversized token
        PersistenceError: Store failure
    """
    token = _token(visitor_token)
    if token is None:
        raise ValidationError("A visitor token is required")
    seen_at = to_utc(now) if now else datetime.now(UTC)

    try:
        async with get_async_session() as session:
            if await _bump_visit(session, token, user_id, seen_at) == 0:
                session.add(
                    Visitor(
                        visitor_token=token,
                        user_id=user_id,
                        first_visit=seen_at,
                        last_visit=seen_at,
                        visit_count=1,
                    )
                )
                try:
                    await session.commit()
                except IntegrityError:
                    # Another page load created the row first
                    await session.rollback()
                    await _bump_visit(session, token, user_id, seen_at)
                    await session.commit()
            else:
                await session.commit()

            visitor = (
                await session.execute(
                    select(Visitor)
                    .where(Visitor.visitor_token == token)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one()

    except SQLAlchemyError as e:
        logger.error(f"Error recording visit for {token}: {e}", exc_info=True)
        raise PersistenceError("Could not record visit") from e

    logger.debug(f"Visit recorded for {token} (count={visitor.visit_count})")
    return visitor


def _device_match(token: str | None, user_id: UUID | None, descriptors: dict[str, str]):
    conditions = [getattr(ClientDevice, key) == value for key, value in descriptors.items()]
    if token is not None:
        conditions.append(ClientDevice.visitor_token == token)
    else:
        conditions.append(ClientDevice.visitor_token.is_(None))
        conditions.append(ClientDevice.user_id == user_id)
    return conditions


async def record_device(
    visitor_token: str | None,
    descriptors: dict[str, Any] | None = None,
    user_id: UUID | None = None,
    now: datetime | None = None,
) -> ClientDevice:
    """
    Upsert a device fingerprint for a visitor token (or an account).

    Matching is on token + every descriptor; a match increments
    session_count and bumps last_seen.

    Raises:
        ValidationError: Neither a token nor an account, or bad descriptors
        PersistenceError: Store failure
    """
    token = _token(visitor_token)
    if token is None and user_id is None:
        raise ValidationError("A device needs a visitor token or an account")
    normalized = normalize_descriptors(descriptors)
    seen_at = to_utc(now) if now else datetime.now(UTC)
    conditions = _device_match(token, user_id, normalized)

    values: dict[str, Any] = {
        "session_count": ClientDevice.session_count + 1,
        "last_seen": seen_at,
    }
    if user_id is not None:
        values["user_id"] = func.coalesce(ClientDevice.user_id, literal(user_id, Uuid))

    try:
        async with get_async_session() as session:
            result = await session.execute(
                update(ClientDevice)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(
                    ClientDevice(
                        visitor_token=token,
                        user_id=user_id,
                        first_seen=seen_at,
                        last_seen=seen_at,
                        session_count=1,
                        **normalized,
                    )
                )
            await session.commit()

            device = (
                await session.execute(
                    select(ClientDevice)
                    .where(*conditions)
                    .order_by(ClientDevice.first_seen.asc())
                    .execution_options(populate_existing=True)
                )
            ).scalars().first()

    except SQLAlchemyError as e:
        logger.error(f"Error recording device for {token or user_id}: {e}", exc_info=True)
        raise PersistenceError("Could not record device") from e

    logger.debug(
        f"Device {normalized['device_type']}/{normalized['browser']} recorded "
        f"for {token or user_id} (sessions={device.session_count})"
    )
    return device
