"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  Each test gets a fresh engine; ``StaticPool``
keeps every session of that test on the same in-memory database.  The
per-ride Redis lock and the rate limiter are switched off through the
environment before ``src`` is imported.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RIDE_LOCKS_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["EMAIL_BACKEND"] = "log"

from datetime import timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.domain.entities import Location, Principal, utcnow
from src.domain.enums import Role
from src.infrastructure.database import Base
from src.infrastructure.mailer import Notification, Notifier
from src.infrastructure.models import DriverProfileModel, UserModel
from src.services.rides import RideService

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Sample data ───────────────────────────────────────────────────────


async def make_user(
    session: AsyncSession,
    name: str,
    *roles: Role,
    approved: bool = True,
) -> Principal:
    """Insert a user (plus driver profile for drivers) and return its principal."""
    user = UserModel(name=name, email=f"{name.lower().replace(' ', '.')}@example.com")
    session.add(user)
    await session.flush()
    if Role.DRIVER in roles:
        session.add(DriverProfileModel(user_id=user.id, is_approved=approved))
        await session.flush()
    return Principal(id=user.id, roles=frozenset(roles or (Role.PASSENGER,)))


def where(address: str = "Main street 1", city: str = "Pune") -> Location:
    return Location(address=address, city=city, latitude=18.52, longitude=73.85)


async def post_ride(
    session: AsyncSession,
    driver: Principal,
    *,
    seats: int = 4,
    fare: float = 100.0,
    origin_city: str = "Mumbai",
    destination_city: str = "Pune",
    days_ahead: int = 1,
):
    return await RideService(session).create_ride(
        driver,
        origin=where("Dadar station", origin_city),
        destination=where("Shivaji Nagar", destination_city),
        departure_at=utcnow() + timedelta(days=days_ahead),
        total_seats=seats,
        fare_per_seat=fare,
    )


@pytest_asyncio.fixture
async def driver(db_session) -> Principal:
    return await make_user(db_session, "Dev Driver", Role.DRIVER, Role.PASSENGER)


@pytest_asyncio.fixture
async def passenger(db_session) -> Principal:
    return await make_user(db_session, "Asha Rider", Role.PASSENGER)


@pytest_asyncio.fixture
async def other_passenger(db_session) -> Principal:
    return await make_user(db_session, "Bala Rider", Role.PASSENGER)


@pytest_asyncio.fixture
async def ride(db_session, driver):
    return await post_ride(db_session, driver)


# ── HTTP ──────────────────────────────────────────────────────────────


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)


def auth(principal: Principal) -> dict[str, str]:
    return {
        "X-User-Id": str(principal.id),
        "X-User-Roles": ",".join(sorted(r.value for r in principal.roles)),
    }


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(session_factory, notifier):
    """AsyncClient backed by the per-test SQLite database."""

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    from src.api.app import create_app
    from src.api.dependencies import get_db, get_notifier

    app = create_app()
    app.dependency_overrides[get_db] = _test_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
