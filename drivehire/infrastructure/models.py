"""
SQLAlchemy ORM models.

Tables
------
* ``requesters``          -- vehicle owners hiring a driver (wallet only)
* ``drivers``             -- driver profile surface used by dispatch
* ``ride_orders``         -- one trip request / execution
* ``route_points``        -- append-only GPS samples of an active ride
* ``speed_violations``    -- append-only overspeed log
* ``wallet_transactions`` -- append-only ledger for both wallets

Indexes
-------
* **B-Tree** on ``drivers.h3_cell`` + online flag for the dispatch prefilter.
* **B-Tree** on ``ride_orders.status``, ``requester_id``, ``driver_id`` and
  ``idempotency_key`` for transitions, busy-driver lookups and history.
* ``route_points`` are read back ordered by primary key (arrival order).
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base
from drivehire.domain.entities import Coordinate, DriverState
from drivehire.domain.enums import (
    DropClassification,
    LedgerEntryType,
    RideStatus,
    Role,
    VehicleClass,
)

Money = Numeric(12, 2)


class RequesterModel(Base):
    __tablename__ = "requesters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    wallet_balance = Column(Money, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)

    is_approved = Column(Boolean, default=False, nullable=False)
    is_blocked = Column(Boolean, default=False, nullable=False)
    is_online = Column(Boolean, default=False, nullable=False)
    vehicle_skills = Column(JSON, default=list, nullable=False)

    home_lat = Column(Float, nullable=True)
    home_lng = Column(Float, nullable=True)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)
    h3_cell = Column(String(20), nullable=True)

    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)
    rides_assigned = Column(Integer, default=0, nullable=False)
    ride_limit = Column(Integer, default=0, nullable=False)

    speed_violation_count = Column(Integer, default=0, nullable=False)
    total_rides_completed = Column(Integer, default=0, nullable=False)
    total_earnings = Column(Money, default=0, nullable=False)
    wallet_balance = Column(Money, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_drivers_cell_online", "h3_cell", "is_online"),
    )

    def to_entity(self) -> DriverState:
        current = None
        if self.current_lat is not None and self.current_lng is not None:
            current = Coordinate(self.current_lat, self.current_lng)
        home = None
        if self.home_lat is not None and self.home_lng is not None:
            home = Coordinate(self.home_lat, self.home_lng)
        return DriverState(
            id=self.id,
            is_approved=bool(self.is_approved),
            is_blocked=bool(self.is_blocked),
            is_online=bool(self.is_online),
            vehicle_skills=list(self.vehicle_skills or []),
            current_location=current,
            location_updated_at=self.location_updated_at,
            home_location=home,
            subscription_expires_at=self.subscription_expires_at,
            rides_assigned=self.rides_assigned or 0,
            ride_limit=self.ride_limit or 0,
        )


class RideOrderModel(Base):
    __tablename__ = "ride_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    requester_id = Column(Integer, ForeignKey("requesters.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    vehicle_class = Column(Enum(VehicleClass), nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_address = Column(String(255), nullable=True)
    drop_lat = Column(Float, nullable=False)
    drop_lng = Column(Float, nullable=False)
    drop_address = Column(String(255), nullable=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)

    status = Column(Enum(RideStatus), default=RideStatus.SEARCHING, nullable=False)
    is_round_trip = Column(Boolean, default=False, nullable=False)
    is_return_leg = Column(Boolean, default=False, nullable=False)
    turnaround_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    driver_reached_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(Enum(Role), nullable=True)
    cancel_reason = Column(String(255), nullable=True)

    ride_started_at = Column(DateTime(timezone=True), nullable=True)
    ride_start_lat = Column(Float, nullable=True)
    ride_start_lng = Column(Float, nullable=True)
    ride_ended_at = Column(DateTime(timezone=True), nullable=True)
    ride_end_lat = Column(Float, nullable=True)
    ride_end_lng = Column(Float, nullable=True)

    # Settlement -- written once by the ACTIVE -> COMPLETED update
    hourly_rate = Column(Money, nullable=True)
    ride_hours = Column(Numeric(6, 1), nullable=True)
    base_fare = Column(Money, nullable=True)
    return_distance_km = Column(Numeric(8, 1), nullable=True)
    return_charges = Column(Money, nullable=True)
    final_amount = Column(Money, nullable=True)
    platform_commission = Column(Money, nullable=True)
    driver_earnings = Column(Money, nullable=True)
    drop_classification = Column(Enum(DropClassification), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    route_points = relationship(
        "RoutePointModel",
        order_by="RoutePointModel.id",
        lazy="raise",
        viewonly=True,
    )

    __table_args__ = (
        Index("idx_orders_status", "status"),
        Index("idx_orders_requester", "requester_id"),
        Index("idx_orders_driver", "driver_id"),
        Index("idx_orders_idempotency", "idempotency_key"),
    )

    @property
    def pickup(self) -> Coordinate:
        return Coordinate(self.pickup_lat, self.pickup_lng)

    @property
    def drop(self) -> Coordinate:
        return Coordinate(self.drop_lat, self.drop_lng)


class RoutePointModel(Base):
    __tablename__ = "route_points"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("ride_orders.id"), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_route_points_order", "order_id", "id"),)


class SpeedViolationModel(Base):
    __tablename__ = "speed_violations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("ride_orders.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    requester_id = Column(Integer, ForeignKey("requesters.id"), nullable=True)
    speed = Column(Float, nullable=False)
    max_allowed = Column(Float, nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    notified_requester = Column(Boolean, default=False, nullable=False)
    notified_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_violations_driver", "driver_id"),
        Index("idx_violations_order", "order_id"),
    )


class WalletTransactionModel(Base):
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_role = Column(Enum(Role), nullable=False)
    account_id = Column(Integer, nullable=False)
    entry_type = Column(Enum(LedgerEntryType), nullable=False)
    amount = Column(Money, nullable=False)
    description = Column(String(255), nullable=False)
    order_id = Column(Integer, ForeignKey("ride_orders.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_wallet_account", "account_role", "account_id"),
    )
