"""
Ride lifecycle service
======================

SEARCHING -> ACCEPTED -> ACTIVE -> COMPLETED, or any non-terminal -> CANCELLED.

Every transition is a conditional UPDATE checked against the stored status
at write time (see ``RideOrderRepository.transition``).  When the UPDATE
matches no row the order is re-read only to explain *why*: a missing order
is ``OrderNotFound``; anything else is a ``Conflict``.

Settlement (ACTIVE -> COMPLETED) runs in one transaction together with the
requester debit, the driver credit and both ledger entries, so no partial
settlement can be committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from drivehire.config import Settings, settings as default_settings
from drivehire.domain.drop import classify_drop, return_distance_km
from drivehire.domain.entities import Coordinate, Participant, ensure_utc, utcnow
from drivehire.domain.enums import (
    TERMINAL_STATUSES,
    DropClassification,
    LedgerEntryType,
    RideStatus,
    Role,
    VehicleClass,
)
from drivehire.domain.errors import (
    Conflict,
    InsufficientBalance,
    InvalidRequest,
    NotEligible,
    OrderNotFound,
    PartialSettlementFailure,
    RideNoLongerAvailable,
)
from drivehire.domain.events import Event, EventName
from drivehire.domain.pricing import FareBreakdown, FareEngine, FareSchedule
from drivehire.infrastructure.models import RideOrderModel
from drivehire.infrastructure.realtime import EventBus
from drivehire.infrastructure.repositories import (
    DriverRepository,
    LedgerRepository,
    RequesterRepository,
    RideOrderRepository,
)

logger = logging.getLogger(__name__)


class Dispatcher(Protocol):
    def schedule(self, order_id: int): ...

    def cancel(self, order_id: int) -> bool: ...


@dataclass(frozen=True)
class CreatedRide:
    order: RideOrderModel
    hourly_rate: Decimal


@dataclass(frozen=True)
class EndedRide:
    order: RideOrderModel
    fare: Optional[FareBreakdown] = None

    @property
    def turnaround(self) -> bool:
        return self.fare is None


def _valid_coordinate(point: Optional[Coordinate]) -> bool:
    return (
        point is not None
        and point.latitude is not None
        and point.longitude is not None
        and -90 <= point.latitude <= 90
        and -180 <= point.longitude <= 180
    )


def order_reference(order_id: int) -> str:
    return f"#{order_id:08d}"


class RideLifecycle:
    def __init__(
        self,
        session: AsyncSession,
        bus: EventBus,
        dispatcher: Dispatcher,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.bus = bus
        self.dispatcher = dispatcher
        self.config = config
        self.clock = clock
        self.fares = FareEngine(FareSchedule.from_settings(config))
        self.orders = RideOrderRepository(session)
        self.drivers = DriverRepository(session)
        self.requesters = RequesterRepository(session)
        self.ledger = LedgerRepository(session)

    # ── Creation ──────────────────────────────────────────────────────

    async def create_ride(
        self,
        requester_id: int,
        vehicle_class: VehicleClass | str,
        pickup: Coordinate,
        drop: Coordinate,
        scheduled_at: datetime,
        round_trip: bool = False,
        *,
        pickup_address: Optional[str] = None,
        drop_address: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CreatedRide:
        try:
            vehicle_class = VehicleClass(vehicle_class)
        except ValueError:
            raise InvalidRequest(f"Unknown vehicle class: {vehicle_class}") from None
        if not _valid_coordinate(pickup) or not _valid_coordinate(drop):
            raise InvalidRequest("Pickup and drop coordinates are required")
        if scheduled_at is None:
            raise InvalidRequest("Scheduled time is required")

        if idempotency_key:
            existing = await self.orders.get_by_idempotency_key(idempotency_key)
            if existing is not None:
                return CreatedRide(existing, Decimal(str(existing.hourly_rate)))

        requester = await self.requesters.get_by_id(requester_id)
        if requester is None or requester.wallet_balance <= 0:
            raise InsufficientBalance(
                "Please load wallet to create ride. Minimum balance > 0 required."
            )

        hourly_rate = Decimal(str(self.fares.hourly_rate(vehicle_class.value)))
        try:
            order = await self.orders.create_order(
                requester_id=requester_id,
                vehicle_class=vehicle_class,
                pickup_lat=pickup.latitude,
                pickup_lng=pickup.longitude,
                pickup_address=pickup_address,
                drop_lat=drop.latitude,
                drop_lng=drop.longitude,
                drop_address=drop_address,
                scheduled_at=scheduled_at,
                is_round_trip=round_trip,
                hourly_rate=hourly_rate,
                idempotency_key=idempotency_key,
            )
            await self.session.commit()
        except IntegrityError:
            # lost a race with a retry carrying the same idempotency key
            await self.session.rollback()
            if not idempotency_key:
                raise
            existing = await self.orders.get_by_idempotency_key(idempotency_key)
            if existing is None:
                raise
            return CreatedRide(existing, Decimal(str(existing.hourly_rate)))
        logger.info("Order %s created by requester %s", order.id, requester_id)

        order = await self._reload(order.id)
        self.dispatcher.schedule(order.id)
        return CreatedRide(order, hourly_rate)

    # ── Driver transitions ────────────────────────────────────────────

    async def accept_ride(self, order_id: int, driver_id: int) -> RideOrderModel:
        driver = await self.drivers.get_by_id(driver_id, fresh=True)
        if driver is None:
            raise NotEligible("Driver not found")
        reason = driver.to_entity().ineligibility_reason(self.clock())
        if reason:
            raise NotEligible(reason)

        order = await self.orders.get_by_id(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if not driver.to_entity().can_operate(order.vehicle_class.value):
            raise NotEligible(f"Driver cannot operate {order.vehicle_class.value}")

        won = await self.orders.transition(
            order_id,
            RideStatus.ACCEPTED,
            conditions=(RideOrderModel.driver_id.is_(None),),
            driver_id=driver_id,
            accepted_at=self.clock(),
        )
        if not won:
            await self.session.rollback()
            raise RideNoLongerAvailable("Ride no longer available")

        if not await self.drivers.increment_rides_assigned(driver_id):
            # quota used up by a concurrent accept; the order stays SEARCHING
            await self.session.rollback()
            raise NotEligible("Ride limit for current subscription reached")
        await self.session.commit()
        self.dispatcher.cancel(order_id)
        logger.info("Order %s accepted by driver %s", order_id, driver_id)

        order = await self._reload(order_id)
        await self.bus.notify(
            Participant.requester(order.requester_id),
            Event(
                EventName.RIDE_ACCEPTED,
                {
                    "order_id": order.id,
                    "driver": {"id": driver.id, "name": driver.name},
                },
            ),
        )
        return order

    async def start_ride(
        self, order_id: int, driver_id: int, location: Coordinate
    ) -> RideOrderModel:
        if not _valid_coordinate(location):
            raise InvalidRequest("Start location is required")
        now = self.clock()
        moved = await self.orders.transition(
            order_id,
            RideStatus.ACTIVE,
            by_driver=driver_id,
            ride_started_at=now,
            ride_start_lat=location.latitude,
            ride_start_lng=location.longitude,
        )
        if not moved:
            await self._explain_failed_transition(order_id, "start")
        await self.session.commit()
        logger.info("Order %s started by driver %s", order_id, driver_id)

        order = await self._reload(order_id)
        await self.bus.notify(
            Participant.requester(order.requester_id),
            Event(
                EventName.RIDE_STARTED,
                {"order_id": order.id, "ride_started_at": order.ride_started_at},
            ),
        )
        return order

    async def end_ride(
        self, order_id: int, driver_id: int, location: Coordinate
    ) -> EndedRide:
        if not _valid_coordinate(location):
            raise InvalidRequest("End location is required")

        order = await self.orders.get_by_id(order_id, fresh=True)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if order.driver_id != driver_id or order.status != RideStatus.ACTIVE:
            raise Conflict("Active order not found for this driver")

        if order.is_round_trip and not order.is_return_leg:
            return await self._turn_around(order, driver_id)
        return await self._complete(order, driver_id, location)

    async def _turn_around(
        self, order: RideOrderModel, driver_id: int
    ) -> EndedRide:
        now = self.clock()
        if not await self.orders.begin_return_leg(order.id, driver_id, now):
            await self.session.rollback()
            raise Conflict("Turnaround already recorded or order no longer active")
        await self.session.commit()
        logger.info("Order %s reached turnaround point", order.id)

        order = await self._reload(order.id)
        await self.bus.notify(
            Participant.requester(order.requester_id),
            Event(
                EventName.RIDE_TURNAROUND,
                {"order_id": order.id, "turnaround_at": order.turnaround_at},
            ),
        )
        return EndedRide(order)

    async def _complete(
        self, order: RideOrderModel, driver_id: int, location: Coordinate
    ) -> EndedRide:
        now = self.clock()
        drop_target = order.pickup if order.is_round_trip else order.drop
        classification = classify_drop(
            location, drop_target, order.pickup, self.config.drop_threshold_m
        )

        distance_home = 0.0
        if classification == DropClassification.RETURN_CHARGED:
            driver = await self.drivers.get_by_id(driver_id)
            home = driver.to_entity().home_location if driver else None
            distance_home = return_distance_km(drop_target, home)

        fare = self.fares.calculate(
            ensure_utc(order.ride_started_at),
            now,
            order.vehicle_class.value,
            classification,
            distance_home,
        )

        requester_id = order.requester_id
        reference = order_reference(order.id)
        try:
            settled = await self.orders.transition(
                order.id,
                RideStatus.COMPLETED,
                by_driver=driver_id,
                conditions=(
                    (RideOrderModel.is_round_trip.is_(False))
                    | (RideOrderModel.is_return_leg.is_(True)),
                ),
                ride_ended_at=now,
                ride_end_lat=location.latitude,
                ride_end_lng=location.longitude,
                drop_classification=classification,
                hourly_rate=fare.hourly_rate,
                ride_hours=fare.ride_hours,
                base_fare=fare.base_fare,
                return_distance_km=fare.return_distance_km,
                return_charges=fare.return_charges,
                final_amount=fare.final_amount,
                platform_commission=fare.platform_commission,
                driver_earnings=fare.driver_earnings,
            )
            if not settled:
                raise Conflict("Order was completed or cancelled concurrently")

            if not await self.requesters.debit(requester_id, fare.final_amount):
                raise PartialSettlementFailure(
                    f"Requester {requester_id} debit failed for order {order.id}"
                )
            if not await self.drivers.credit_earnings(driver_id, fare.driver_earnings):
                raise PartialSettlementFailure(
                    f"Driver {driver_id} credit failed for order {order.id}"
                )

            await self.ledger.record(
                role=Role.REQUESTER,
                account_id=requester_id,
                entry_type=LedgerEntryType.DEBIT,
                amount=fare.final_amount,
                description=f"Ride payment - Order {reference}",
                order_id=order.id,
            )
            await self.ledger.record(
                role=Role.DRIVER,
                account_id=driver_id,
                entry_type=LedgerEntryType.CREDIT,
                amount=fare.driver_earnings,
                description=f"Ride earnings - Order {reference}",
                order_id=order.id,
            )
            await self.session.commit()
        except PartialSettlementFailure:
            await self.session.rollback()
            logger.critical(
                "Settlement rolled back for order %s; balances untouched",
                order.id,
                exc_info=True,
            )
            raise
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Order %s completed: %s (%s), final=%s",
            order.id,
            classification.value,
            fare.ride_hours,
            fare.final_amount,
        )
        order = await self._reload(order.id)
        await self.bus.notify(
            Participant.requester(requester_id),
            Event(
                EventName.RIDE_COMPLETED,
                {
                    "order_id": order.id,
                    "drop_classification": classification,
                    "fare": fare,
                },
            ),
        )
        return EndedRide(order, fare)

    # ── Cancellation ──────────────────────────────────────────────────

    async def cancel_ride(
        self, order_id: int, actor: Participant, reason: Optional[str] = None
    ) -> RideOrderModel:
        order = await self.orders.get_by_id(order_id, fresh=True)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if actor.role == Role.REQUESTER and order.requester_id != actor.user_id:
            raise NotEligible("Order belongs to another requester")
        if actor.role == Role.DRIVER and order.driver_id != actor.user_id:
            raise NotEligible("Order is not assigned to this driver")

        cancelled = await self.orders.transition(
            order_id,
            RideStatus.CANCELLED,
            cancelled_by=actor.role,
            cancel_reason=reason or f"Cancelled by {actor.role.value.lower()}",
        )
        if not cancelled:
            await self.session.rollback()
            raise Conflict("Cannot cancel this order")
        await self.session.commit()
        self.dispatcher.cancel(order_id)
        logger.info("Order %s cancelled by %s", order_id, actor.role.value)

        order = await self._reload(order_id)
        event = Event(
            EventName.RIDE_CANCELLED,
            {
                "order_id": order.id,
                "cancelled_by": order.cancelled_by,
                "reason": order.cancel_reason,
            },
        )
        if actor.role != Role.REQUESTER:
            await self.bus.notify(Participant.requester(order.requester_id), event)
        if actor.role != Role.DRIVER and order.driver_id is not None:
            await self.bus.notify(Participant.driver(order.driver_id), event)
        return order

    # ── Queries ───────────────────────────────────────────────────────

    async def get_order(self, order_id: int) -> RideOrderModel:
        order = await self.orders.get_with_route(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    async def list_requester_orders(self, requester_id: int) -> list[RideOrderModel]:
        return await self.orders.list_for_requester(requester_id)

    # ── Internals ─────────────────────────────────────────────────────

    async def _reload(self, order_id: int) -> RideOrderModel:
        order = await self.orders.get_by_id(order_id, fresh=True)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    async def _explain_failed_transition(self, order_id: int, action: str) -> None:
        await self.session.rollback()
        order = await self.orders.get_by_id(order_id, fresh=True)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if order.status in TERMINAL_STATUSES:
            raise Conflict(f"Cannot {action} a {order.status.value.lower()} order")
        raise Conflict(
            f"Cannot {action} order in status {order.status.value} for this driver"
        )
