"""
Driver presence endpoints
=========================

PUT /api/v1/drivers/me/online   -- go online (eligibility enforced)
PUT /api/v1/drivers/me/offline  -- go offline
PUT /api/v1/drivers/me/location -- move without changing the online flag

Live GPS during a ride goes over the WebSocket, not here.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from drivehire.api.dependencies import current_driver, get_monitor
from drivehire.api.middleware import limiter
from drivehire.api.schemas import DriverStatusResponse, LocationRequest
from drivehire.config import settings
from drivehire.services.location import LocationMonitor

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.put(
    "/me/online",
    response_model=DriverStatusResponse,
    summary="Go online",
    responses={403: {"description": "Driver not approved, blocked or out of quota."}},
)
@limiter.limit(settings.rate_limit)
async def go_online(
    request: Request,
    body: Optional[LocationRequest] = None,
    driver_id: int = Depends(current_driver),
    monitor: LocationMonitor = Depends(get_monitor),
):
    return await monitor.go_online(driver_id, body.coordinate if body else None)


@router.put("/me/offline", summary="Go offline")
@limiter.limit(settings.rate_limit)
async def go_offline(
    request: Request,
    driver_id: int = Depends(current_driver),
    monitor: LocationMonitor = Depends(get_monitor),
):
    await monitor.go_offline(driver_id)
    return {"driver_id": driver_id, "is_online": False}


@router.put(
    "/me/location",
    response_model=DriverStatusResponse,
    summary="Update current location",
)
@limiter.limit(settings.rate_limit)
async def update_location(
    request: Request,
    body: LocationRequest,
    driver_id: int = Depends(current_driver),
    monitor: LocationMonitor = Depends(get_monitor),
):
    return await monitor.update_location(driver_id, body.coordinate)
