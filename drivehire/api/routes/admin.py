"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health           -- simple health check
GET /api/v1/admin/speed-violations -- overspeed log, newest first
GET /api/v1/admin/rides            -- orders, optionally filtered by status
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from drivehire.api.dependencies import current_admin, get_db
from drivehire.api.middleware import limiter
from drivehire.api.schemas import (
    HealthResponse,
    RideOrderResponse,
    SpeedViolationResponse,
)
from drivehire.config import settings
from drivehire.domain.enums import RideStatus
from drivehire.infrastructure.repositories import (
    RideOrderRepository,
    SpeedViolationRepository,
)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()


@router.get(
    "/speed-violations",
    response_model=list[SpeedViolationResponse],
    summary="List speed violations",
)
@limiter.limit(settings.rate_limit)
async def speed_violations(
    request: Request,
    driver_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    _admin: int = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await SpeedViolationRepository(db).list_recent(driver_id, limit)


@router.get(
    "/rides",
    response_model=list[RideOrderResponse],
    summary="List orders",
)
@limiter.limit(settings.rate_limit)
async def list_rides(
    request: Request,
    status: Optional[RideStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    _admin: int = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await RideOrderRepository(db).list_orders(status, limit)
