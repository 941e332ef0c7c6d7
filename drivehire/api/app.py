"""
FastAPI application factory.

* Registers routes for rides, drivers, admin and the realtime socket.
* Builds the process-wide connection registry, event bus, dispatch
  scheduler and location monitor, and hangs them off ``app.state``.
* Starts / stops the event relay and dispatch timers via lifespan events.
* Maps domain errors to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drivehire.api.middleware import limiter
from drivehire.api.routes import admin, drivers, realtime, rides
from drivehire.config import settings
from drivehire.domain.errors import (
    Conflict,
    DriveHireError,
    InsufficientBalance,
    InvalidRequest,
    NotEligible,
    OrderNotFound,
    PartialSettlementFailure,
)
from drivehire.infrastructure.database import async_session_factory
from drivehire.infrastructure.realtime import (
    ConnectionRegistry,
    EventBus,
    LocalEventBus,
    RedisEventBus,
)
from drivehire.infrastructure.redis_client import get_redis
from drivehire.services.location import LocationMonitor
from drivehire.workers.dispatcher import DispatchScheduler

logging.basicConfig(level=logging.INFO)

ERROR_STATUS = {
    InvalidRequest: 400,
    InsufficientBalance: 403,
    NotEligible: 403,
    OrderNotFound: 404,
    Conflict: 409,
    PartialSettlementFailure: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the event relay on startup; cancel timers and stop on shutdown."""
    await app.state.bus.start()
    yield
    await app.state.dispatcher.shutdown()
    await app.state.bus.stop()


async def domain_error_handler(request: Request, exc: DriveHireError) -> JSONResponse:
    status_code = next(
        (ERROR_STATUS[cls] for cls in type(exc).__mro__ if cls in ERROR_STATUS),
        400,
    )
    detail = str(exc)
    if isinstance(exc, PartialSettlementFailure):
        detail = "Settlement failed; no balances were changed"
    return JSONResponse(status_code=status_code, content={"detail": detail})


def build_event_bus(registry: ConnectionRegistry) -> EventBus:
    if settings.event_relay == "redis":
        return RedisEventBus(registry, get_redis(), settings.event_channel)
    return LocalEventBus(registry)


def create_app(
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
) -> FastAPI:
    app = FastAPI(
        title="DriveHire API",
        description=(
            "Hires a driver for the requester's own vehicle: dispatches the "
            "order to nearby eligible drivers, tracks the ride live and "
            "settles the fare between both wallets."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Process-wide services
    registry = ConnectionRegistry()
    bus = build_event_bus(registry)
    app.state.registry = registry
    app.state.bus = bus
    app.state.dispatcher = DispatchScheduler(session_factory, bus)
    app.state.monitor = LocationMonitor(session_factory, bus)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(DriveHireError, domain_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(realtime.router)

    return app
