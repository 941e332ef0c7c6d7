"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from drivehire.domain.entities import Participant
from drivehire.infrastructure.database import async_session_factory
from drivehire.infrastructure.realtime import ConnectionRegistry, EventBus
from drivehire.services.location import LocationMonitor
from drivehire.services.rides import Dispatcher, RideLifecycle


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Process-wide services (built in ``create_app``) ───────────────────


def get_registry(conn: HTTPConnection) -> ConnectionRegistry:
    return conn.app.state.registry


def get_bus(conn: HTTPConnection) -> EventBus:
    return conn.app.state.bus


def get_dispatcher(conn: HTTPConnection) -> Dispatcher:
    return conn.app.state.dispatcher


def get_monitor(conn: HTTPConnection) -> LocationMonitor:
    return conn.app.state.monitor


def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    bus: EventBus = Depends(get_bus),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> RideLifecycle:
    return RideLifecycle(db, bus, dispatcher)


# ── Identity ──────────────────────────────────────────────────────────
# Authentication happens upstream; the gateway forwards the caller's id.


def current_requester(x_requester_id: int = Header(...)) -> int:
    return x_requester_id


def current_driver(x_driver_id: int = Header(...)) -> int:
    return x_driver_id


def current_admin(x_admin_id: int = Header(...)) -> int:
    return x_admin_id


def current_actor(
    x_requester_id: Optional[int] = Header(None),
    x_driver_id: Optional[int] = Header(None),
    x_admin_id: Optional[int] = Header(None),
) -> Participant:
    """Whoever is calling; admin wins over driver wins over requester."""
    if x_admin_id is not None:
        return Participant.admin(x_admin_id)
    if x_driver_id is not None:
        return Participant.driver(x_driver_id)
    if x_requester_id is not None:
        return Participant.requester(x_requester_id)
    raise HTTPException(status_code=401, detail="Missing caller identity")
