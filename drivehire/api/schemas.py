"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from drivehire.domain.entities import Coordinate
from drivehire.domain.enums import (
    DropClassification,
    RideStatus,
    Role,
    VehicleClass,
)


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    vehicle_class: VehicleClass
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    pickup_address: Optional[str] = Field(None, max_length=255)
    drop_lat: float = Field(..., ge=-90, le=90)
    drop_lng: float = Field(..., ge=-180, le=180)
    drop_address: Optional[str] = Field(None, max_length=255)
    scheduled_at: datetime
    is_round_trip: bool = False
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )

    @property
    def pickup(self) -> Coordinate:
        return Coordinate(self.pickup_lat, self.pickup_lng)

    @property
    def drop(self) -> Coordinate:
        return Coordinate(self.drop_lat, self.drop_lng)


class LocationRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lng)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


# ── Responses ─────────────────────────────────────────────────────────


class RideOrderResponse(BaseModel):
    id: int
    requester_id: int
    driver_id: Optional[int] = None
    vehicle_class: VehicleClass
    status: RideStatus
    pickup_lat: float
    pickup_lng: float
    pickup_address: Optional[str] = None
    drop_lat: float
    drop_lng: float
    drop_address: Optional[str] = None
    scheduled_at: datetime
    is_round_trip: bool
    is_return_leg: bool
    turnaround_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    driver_reached_at: Optional[datetime] = None
    ride_started_at: Optional[datetime] = None
    ride_ended_at: Optional[datetime] = None
    cancelled_by: Optional[Role] = None
    cancel_reason: Optional[str] = None
    hourly_rate: Optional[float] = None
    ride_hours: Optional[float] = None
    base_fare: Optional[float] = None
    return_distance_km: Optional[float] = None
    return_charges: Optional[float] = None
    final_amount: Optional[float] = None
    platform_commission: Optional[float] = None
    driver_earnings: Optional[float] = None
    drop_classification: Optional[DropClassification] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RoutePointResponse(BaseModel):
    latitude: float
    longitude: float
    speed: float
    recorded_at: datetime

    model_config = {"from_attributes": True}


class RideOrderDetailResponse(RideOrderResponse):
    route_points: list[RoutePointResponse] = []


class RideCreatedResponse(BaseModel):
    order: RideOrderResponse
    hourly_rate: float


class FareResponse(BaseModel):
    hourly_rate: float
    ride_hours: float
    base_fare: float
    return_distance_km: float
    return_charges: float
    final_amount: float
    platform_commission: float
    driver_earnings: float

    model_config = {"from_attributes": True}


class RideEndedResponse(BaseModel):
    order: RideOrderResponse
    turnaround: bool
    fare: Optional[FareResponse] = None


class HourlyRatesResponse(BaseModel):
    rates: dict[str, float]
    heavy_block_hours: float
    heavy_block_charge: float
    return_rate_per_km: float


class DriverStatusResponse(BaseModel):
    id: int
    name: str
    is_online: bool
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    location_updated_at: Optional[datetime] = None
    h3_cell: Optional[str] = None
    speed_violation_count: int

    model_config = {"from_attributes": True}


class SpeedViolationResponse(BaseModel):
    id: int
    order_id: int
    driver_id: int
    requester_id: Optional[int] = None
    speed: float
    max_allowed: float
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notified_requester: bool
    notified_admin: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
