"""
Pytest configuration and shared fixtures for tests
"""

import itertools
from datetime import datetime
from functools import partial
from unittest.mock import AsyncMock, Mock
from zoneinfo import ZoneInfo

import pytest
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

from gym_booking.config import BookingConfig
from gym_booking.database import get_session
from gym_booking.db_models import Role, SubType
from gym_booking.models import CallerContext
from gym_booking.repositories import UserRepository
from gym_booking.services.booking_service import BookingService

ROME = ZoneInfo("Europe/Rome")


def rome(*args) -> datetime:
    """Aware datetime in the studio timezone"""
    return datetime(*args, tzinfo=ROME)


SUBSCRIPTION_END = rome(2024, 12, 31, 23, 0)


@pytest.fixture(name="db_engine")
def db_engine_fixture():
    """Create in-memory SQLite database engine for testing"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,  # Keep single connection for in-memory DB
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(name="db_session")
def db_session_fixture(db_engine):
    """Create database session for testing"""
    with Session(db_engine, expire_on_commit=False) as session:
        yield session
        session.rollback()  # Rollback any uncommitted changes after test


@pytest.fixture(name="session_factory")
def session_factory_fixture(db_engine):
    """Committing session context manager bound to the test engine"""
    return partial(get_session, db_engine)


@pytest.fixture(name="config")
def config_fixture():
    return BookingConfig(_env_file=None, timezone="Europe/Rome")


@pytest.fixture(name="dispatcher")
def dispatcher_fixture():
    """Notification dispatcher that records calls"""
    dispatcher = Mock()
    dispatcher.dispatch = AsyncMock()
    return dispatcher


@pytest.fixture(name="service")
def service_fixture(session_factory, dispatcher, config):
    return BookingService(
        session_factory=session_factory, dispatcher=dispatcher, config=config
    )


@pytest.fixture(name="make_user")
def make_user_fixture(session_factory):
    """Factory persisting a member and returning it"""
    counter = itertools.count(1)

    def _make(
        sub_type: SubType = SubType.SHARED,
        remaining_accesses: int = 10,
        expires_at: datetime = SUBSCRIPTION_END,
        role: Role = Role.USER,
        telegram_id=None,
    ):
        n = next(counter)
        with session_factory() as session:
            return UserRepository(session).create_user(
                first_name="Member",
                last_name=f"No{n}",
                email=f"member{n}@example.com",
                expires_at=expires_at,
                remaining_accesses=remaining_accesses,
                sub_type=sub_type,
                role=role,
                telegram_id=telegram_id,
            )

    return _make


@pytest.fixture(name="admin")
def admin_fixture(make_user):
    return make_user(role=Role.ADMIN, remaining_accesses=0)


def caller_for(user) -> CallerContext:
    return CallerContext.from_user(user)
