"""
Test configuration and fixtures.

This module sets up test environment and provides shared fixtures for all tests.
"""

import os
import tempfile
from datetime import UTC, date, datetime, time
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace
from uuid import uuid4

import pytest

# Point the store at a throwaway SQLite file and pin the business clock.
# Must be set BEFORE any imports of database.connection or shared.config
TEST_DB_PATH = Path(tempfile.gettempdir()) / f"spa_core_test_{os.getpid()}.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["TIMEZONE"] = "Asia/Manila"
os.environ["BUSINESS_DAY_START_HOUR"] = "16"
os.environ["BUSINESS_DAY_END_HOUR"] = "4"
os.environ["COMMISSION_RATE"] = "0.30"
os.environ["CLIENT_PROFILE_ROLES"] = "customer"
os.environ["HOME_SERVICE_KEYWORD"] = "home"


@pytest.fixture(scope="function", autouse=True)
async def cleanup_engine():
    """
    Dispose the database engine after each test.

    Each test runs on its own event loop; pooled connections must not leak
    into the next one.
    """
    yield
    from database.connection import engine
    await engine.dispose()


@pytest.fixture
async def db():
    """Fresh schema for one test."""
    from database.connection import drop_db, init_db

    await drop_db()
    await init_db()
    yield
    await drop_db()


# ============================================================================
# Persisted rows
# ============================================================================


@pytest.fixture
async def service(db):
    from database.connection import get_async_session
    from database.models import Service

    async with get_async_session() as session:
        row = Service(title="Swedish Massage", category="massage", price=Decimal("1000.00"), duration=60)
        session.add(row)
        await session.commit()
    return row


@pytest.fixture
async def home_service(db):
    from database.connection import get_async_session
    from database.models import Service

    async with get_async_session() as session:
        row = Service(title="Home Service Shiatsu", category="home", price=Decimal("1500.00"), duration=90)
        session.add(row)
        await session.commit()
    return row


@pytest.fixture
async def therapist(db):
    from database.connection import get_async_session
    from database.models import Therapist

    async with get_async_session() as session:
        row = Therapist(name="Maria", active=True, unavailable_dates=[])
        session.add(row)
        await session.commit()
    return row


@pytest.fixture
async def other_therapist(db):
    from database.connection import get_async_session
    from database.models import Therapist

    async with get_async_session() as session:
        row = Therapist(name="Andrea", active=True, unavailable_dates=["2025-03-10"])
        session.add(row)
        await session.commit()
    return row


@pytest.fixture
async def customer(db):
    from database.connection import get_async_session
    from database.models import Profile

    async with get_async_session() as session:
        row = Profile(
            email="ana@example.com",
            full_name="Ana Reyes",
            role="customer",
            created_at=datetime(2025, 1, 5, 2, 0, tzinfo=UTC),
        )
        session.add(row)
        await session.commit()
    return row


# ============================================================================
# In-memory rows for pure logic
# ============================================================================


def make_booking(**overrides):
    """Booking-shaped object for pure tests (no session needed)."""
    values = {
        "id": uuid4(),
        "user_id": None,
        "guest_name": None,
        "guest_email": None,
        "guest_phone": None,
        "visitor_token": None,
        "service_id": uuid4(),
        "service": SimpleNamespace(title="Swedish Massage", price=Decimal("1000"), duration=60),
        "therapist_id": None,
        "therapist": None,
        "booking_date": date(2025, 3, 4),
        "booking_time": time(18, 0),
        "status": "pending",
        "created_at": datetime(2025, 3, 1, 10, 0, tzinfo=UTC),
        "completed_at": None,
        "tip_amount": Decimal("0"),
        "tip_recipient": None,
        "price_at_booking": None,
        "commission_amount": Decimal("0"),
        "revenue_amount": Decimal("0"),
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def booking_factory():
    return make_booking
