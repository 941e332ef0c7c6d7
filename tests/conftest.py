"""
Shared test fixtures.

Uses a temp-file SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  ``NullPool`` gives every session its own
connection, so concurrent sessions really contend on the same rows.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from drivehire.config import Settings
from drivehire.domain.entities import Coordinate, Participant
from drivehire.domain.events import Event
from drivehire.domain.matching import location_cell
from drivehire.infrastructure.database import Base
from drivehire.infrastructure.models import DriverModel, RequesterModel
from drivehire.infrastructure.realtime import EventBus

PICKUP = Coordinate(17.40, 78.48)
DROP = Coordinate(17.45, 78.50)
T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


# ── Fakes ─────────────────────────────────────────────────────────────


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class RecordingBus(EventBus):
    """Event bus that records instead of delivering."""

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.sent: list[tuple[Participant, Event]] = []
        self.broadcasts: list[tuple[str, Event]] = []

    async def send(self, participant: Participant, event: Event) -> bool:
        self.sent.append((participant, event))
        return self.connected

    async def broadcast(self, room: str, event: Event) -> int:
        self.broadcasts.append((room, event))
        return 1 if self.connected else 0

    def events_for(self, participant: Participant) -> list[str]:
        return [e.name.value for p, e in self.sent if p == participant]

    def names(self) -> list[str]:
        return [e.name.value for _, e in self.sent]


class FailingBus(RecordingBus):
    """Records, then fails every delivery like an unreachable relay."""

    async def send(self, participant: Participant, event: Event) -> bool:
        await super().send(participant, event)
        raise ConnectionError("relay down")

    async def broadcast(self, room: str, event: Event) -> int:
        await super().broadcast(room, event)
        raise ConnectionError("relay down")


class RecordingDispatcher:
    """Stands in for ``DispatchScheduler``; no timers are started."""

    def __init__(self):
        self.scheduled: list[int] = []
        self.cancelled: list[int] = []

    def schedule(self, order_id: int):
        self.scheduled.append(order_id)

    def cancel(self, order_id: int) -> bool:
        self.cancelled.append(order_id)
        return True


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables in a fresh database file, yield a factory, then dispose."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'drivehire.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_requester(session_factory):
    async def _make(name: str = "Requester", wallet_balance: float = 5000) -> int:
        async with session_factory() as session:
            requester = RequesterModel(name=name, wallet_balance=wallet_balance)
            session.add(requester)
            await session.commit()
            return requester.id

    return _make


@pytest.fixture
def make_driver(session_factory, clock):
    async def _make(
        name: str = "Driver",
        location: Coordinate | None = Coordinate(17.401, 78.481),
        skills: tuple[str, ...] = ("CAR",),
        home: Coordinate | None = None,
        **overrides,
    ) -> int:
        fields = dict(
            name=name,
            is_approved=True,
            is_blocked=False,
            is_online=True,
            vehicle_skills=list(skills),
            subscription_expires_at=clock() + timedelta(days=30),
            rides_assigned=0,
            ride_limit=10,
            speed_violation_count=0,
            total_rides_completed=0,
            total_earnings=0,
            wallet_balance=0,
        )
        if location is not None:
            fields.update(
                current_lat=location.latitude,
                current_lng=location.longitude,
                location_updated_at=clock(),
                h3_cell=location_cell(location.latitude, location.longitude),
            )
        if home is not None:
            fields.update(home_lat=home.latitude, home_lng=home.longitude)
        fields.update(overrides)
        async with session_factory() as session:
            driver = DriverModel(**fields)
            session.add(driver)
            await session.commit()
            return driver.id

    return _make
