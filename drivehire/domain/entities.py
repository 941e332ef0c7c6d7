"""
Domain value objects and the read-only driver view used by matching.

``DriverState`` is a snapshot of the externally-owned driver profile; the
core only filters on it and never mutates it in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .distance import haversine_km
from .enums import Role


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops the offset on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def distance_km(self, other: Coordinate) -> float:
        return haversine_km(
            self.latitude, self.longitude, other.latitude, other.longitude
        )

    def distance_m(self, other: Coordinate) -> float:
        return self.distance_km(other) * 1000.0


@dataclass(frozen=True)
class Participant:
    """A connected party: who an event goes to, or who performed an action."""

    role: Role
    user_id: int

    @classmethod
    def requester(cls, user_id: int) -> Participant:
        return cls(Role.REQUESTER, user_id)

    @classmethod
    def driver(cls, user_id: int) -> Participant:
        return cls(Role.DRIVER, user_id)

    @classmethod
    def admin(cls, user_id: int) -> Participant:
        return cls(Role.ADMIN, user_id)


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class DriverState:
    id: int
    is_approved: bool = False
    is_blocked: bool = False
    is_online: bool = False
    vehicle_skills: list[str] = field(default_factory=list)
    current_location: Optional[Coordinate] = None
    location_updated_at: Optional[datetime] = None
    home_location: Optional[Coordinate] = None
    subscription_expires_at: Optional[datetime] = None
    rides_assigned: int = 0
    ride_limit: int = 0

    def has_active_subscription(self, now: datetime) -> bool:
        expires = ensure_utc(self.subscription_expires_at)
        return expires is not None and expires >= now

    def has_quota(self) -> bool:
        return self.rides_assigned < self.ride_limit

    def can_operate(self, vehicle_class: str) -> bool:
        return vehicle_class in (self.vehicle_skills or [])

    def has_fresh_location(self, now: datetime, max_age_seconds: float) -> bool:
        updated = ensure_utc(self.location_updated_at)
        if self.current_location is None or updated is None:
            return False
        return (now - updated).total_seconds() <= max_age_seconds

    def ineligibility_reason(self, now: datetime) -> Optional[str]:
        """Why this driver may not take a ride, or ``None`` if they may."""
        if not self.is_approved:
            return "Driver not approved"
        if self.is_blocked:
            return "Driver is blocked"
        if not self.has_active_subscription(now):
            return "Subscription expired"
        if not self.has_quota():
            return "Ride limit for current subscription reached"
        return None
