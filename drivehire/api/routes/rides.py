"""
Ride endpoints
==============

POST /api/v1/rides                   -- create a ride (returns 201 Created)
GET  /api/v1/rides/hourly-rates      -- current hourly rates per vehicle class
GET  /api/v1/rides/mine              -- the caller's ride history
GET  /api/v1/rides/{order_id}        -- order detail with route history
POST /api/v1/rides/{order_id}/accept -- driver accepts (first one wins)
POST /api/v1/rides/{order_id}/start  -- driver starts at the pickup
POST /api/v1/rides/{order_id}/end    -- driver ends (turnaround or settlement)
POST /api/v1/rides/{order_id}/cancel -- requester, driver or admin cancels
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from drivehire.api.dependencies import (
    current_actor,
    current_driver,
    current_requester,
    get_lifecycle,
)
from drivehire.api.middleware import limiter
from drivehire.api.schemas import (
    CancelRequest,
    FareResponse,
    HourlyRatesResponse,
    LocationRequest,
    RideCreatedResponse,
    RideCreateRequest,
    RideEndedResponse,
    RideOrderDetailResponse,
    RideOrderResponse,
)
from drivehire.config import settings
from drivehire.domain.entities import Participant
from drivehire.domain.enums import VehicleClass
from drivehire.domain.pricing import FareEngine, FareSchedule
from drivehire.services.rides import RideLifecycle

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideCreatedResponse,
    summary="Create a ride request",
    responses={201: {"description": "Order created; dispatch runs in the background."}},
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    requester_id: int = Depends(current_requester),
    rides: RideLifecycle = Depends(get_lifecycle),
):
    created = await rides.create_ride(
        requester_id,
        body.vehicle_class,
        body.pickup,
        body.drop,
        body.scheduled_at,
        body.is_round_trip,
        pickup_address=body.pickup_address,
        drop_address=body.drop_address,
        idempotency_key=body.idempotency_key,
    )
    return RideCreatedResponse(
        order=RideOrderResponse.model_validate(created.order),
        hourly_rate=created.hourly_rate,
    )


@router.get(
    "/hourly-rates",
    response_model=HourlyRatesResponse,
    summary="Hourly rate per vehicle class",
)
@limiter.limit(settings.rate_limit)
async def hourly_rates(request: Request):
    fares = FareEngine(FareSchedule.from_settings(settings))
    return HourlyRatesResponse(
        rates={vc.value: fares.hourly_rate(vc.value) for vc in VehicleClass},
        heavy_block_hours=settings.heavy_block_hours,
        heavy_block_charge=settings.heavy_block_charge,
        return_rate_per_km=settings.return_rate_per_km,
    )


@router.get(
    "/mine",
    response_model=list[RideOrderResponse],
    summary="Ride history of the calling requester",
)
@limiter.limit(settings.rate_limit)
async def my_rides(
    request: Request,
    requester_id: int = Depends(current_requester),
    rides: RideLifecycle = Depends(get_lifecycle),
):
    return await rides.list_requester_orders(requester_id)


@router.get(
    "/{order_id}",
    response_model=RideOrderDetailResponse,
    summary="Get an order with its route history",
)
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    order_id: int,
    rides: RideLifecycle = Depends(get_lifecycle),
):
    return await rides.get_order(order_id)


@router.post(
    "/{order_id}/accept",
    response_model=RideOrderResponse,
    summary="Accept a searching order",
    responses={409: {"description": "Another driver accepted first."}},
)
@limiter.limit(settings.rate_limit)
async def accept_ride(
    request: Request,
    order_id: int,
    driver_id: int = Depends(current_driver),
    rides: RideLifecycle = Depends(get_lifecycle),
):
    return await rides.accept_ride(order_id, driver_id)


@router.post(
    "/{order_id}/start",
    response_model=RideOrderResponse,
    summary="Start an accepted ride",
)
@limiter.limit(settings.rate_limit)
async def start_ride(
    request: Request,
    order_id: int,
    body: LocationRequest,
    driver_id: int = Depends(current_driver),
    rides: RideLifecycle = Depends(get_lifecycle),
):
    return await rides.start_ride(order_id, driver_id, body.coordinate)


@router.post(
    "/{order_id}/end",
    response_model=RideEndedResponse,
    summary="End an active ride",
    description=(
        "For a round trip the first call records the turnaround and the ride "
        "stays ACTIVE; the next call settles it."
    ),
)
@limiter.limit(settings.rate_limit)
async def end_ride(
    request: Request,
    order_id: int,
    body: LocationRequest,
    driver_id: int = Depends(current_driver),
    rides: RideLifecycle = Depends(get_lifecycle),
):
    ended = await rides.end_ride(order_id, driver_id, body.coordinate)
    return RideEndedResponse(
        order=RideOrderResponse.model_validate(ended.order),
        turnaround=ended.turnaround,
        fare=FareResponse.model_validate(ended.fare) if ended.fare else None,
    )


@router.post(
    "/{order_id}/cancel",
    response_model=RideOrderResponse,
    summary="Cancel a non-terminal order",
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    order_id: int,
    body: Optional[CancelRequest] = None,
    actor: Participant = Depends(current_actor),
    rides: RideLifecycle = Depends(get_lifecycle),
):
    reason = body.reason if body else None
    return await rides.cancel_ride(order_id, actor, reason)
