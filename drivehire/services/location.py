"""
Location Monitor
================

Ingests driver GPS reports (WebSocket or REST) and derives ride events.

Per report
----------
1. The driver's live position, freshness timestamp, H3 cell and online flag
   are always written.
2. With an order assigned to this driver:

   * **ACCEPTED** within ``reached_threshold_m`` of the pickup: the
     ``driver_reached_at`` marker is set by a conditional UPDATE.  Only the
     report that flips it emits ``ride:driver_reached``.
   * **ACTIVE**: a route sample is appended (gated on status inside the
     INSERT) and ``driver:location`` is forwarded with a heading.
   * Speed above ``max_speed_kmh``: a violation row is written and the
     requester, the admin room and the driver are told.  Every offending
     sample counts.

Database errors are logged and the sample is dropped; a lost GPS fix must
never abort a ride.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drivehire.config import Settings, settings as default_settings
from drivehire.domain.distance import initial_bearing
from drivehire.domain.entities import Coordinate, Participant, utcnow
from drivehire.domain.enums import ENGAGED_STATUSES, RideStatus
from drivehire.domain.errors import InvalidRequest, NotEligible
from drivehire.domain.events import ADMIN_ROOM, Event, EventName
from drivehire.domain.matching import location_cell
from drivehire.infrastructure.models import (
    DriverModel,
    RideOrderModel,
    SpeedViolationModel,
)
from drivehire.infrastructure.realtime import EventBus
from drivehire.infrastructure.repositories import (
    DriverRepository,
    RideOrderRepository,
    SpeedViolationRepository,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationOutcome:
    reached: bool = False
    sample_recorded: bool = False
    violation_id: Optional[int] = None


def _check_coordinate(point: Optional[Coordinate]) -> None:
    if (
        point is None
        or point.latitude is None
        or point.longitude is None
        or not -90 <= point.latitude <= 90
        or not -180 <= point.longitude <= 180
    ):
        raise InvalidRequest("Valid latitude and longitude are required")


class LocationMonitor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: EventBus,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.bus = bus
        self.max_speed_kmh = config.max_speed_kmh
        self.reached_threshold_m = config.reached_threshold_m
        self.h3_resolution = config.h3_resolution
        self.clock = clock

    # ── Ingestion ─────────────────────────────────────────────────────

    async def report_location(
        self,
        driver_id: int,
        order_id: Optional[int],
        coordinate: Coordinate,
        speed: Optional[float] = None,
    ) -> LocationOutcome:
        _check_coordinate(coordinate)
        speed = float(speed or 0.0)
        try:
            async with self.session_factory() as session:
                return await self._ingest(
                    session, driver_id, order_id, coordinate, speed
                )
        except SQLAlchemyError:
            logger.exception(
                "Dropping location sample from driver %s (order %s)",
                driver_id,
                order_id,
            )
            return LocationOutcome()

    async def _ingest(
        self,
        session: AsyncSession,
        driver_id: int,
        order_id: Optional[int],
        coordinate: Coordinate,
        speed: float,
    ) -> LocationOutcome:
        now = self.clock()
        drivers = DriverRepository(session)
        orders = RideOrderRepository(session)

        driver = await drivers.get_by_id(driver_id, fresh=True)
        if driver is None:
            logger.warning("Location report from unknown driver %s", driver_id)
            return LocationOutcome()
        previous = driver.to_entity().current_location

        await drivers.update_location(
            driver_id,
            coordinate,
            now,
            location_cell(
                coordinate.latitude, coordinate.longitude, self.h3_resolution
            ),
            online=True,
        )
        if order_id is None:
            await session.commit()
            return LocationOutcome()

        order = await orders.get_by_id(order_id, fresh=True)
        if order is None or order.driver_id != driver_id:
            logger.warning(
                "Driver %s reported location for order %s not assigned to them",
                driver_id,
                order_id,
            )
            await session.commit()
            return LocationOutcome()

        outbox: list[tuple[Optional[Participant], Event]] = []
        reached = False
        recorded = False
        violation: Optional[SpeedViolationModel] = None

        if order.status == RideStatus.ACCEPTED:
            distance_m = coordinate.distance_m(order.pickup)
            if distance_m <= self.reached_threshold_m:
                reached = await orders.mark_driver_reached(order.id, driver_id, now)
            if reached:
                event = Event(
                    EventName.DRIVER_REACHED,
                    {
                        "order_id": order.id,
                        "driver_id": driver_id,
                        "distance_m": round(distance_m, 1),
                    },
                )
                outbox.append((Participant.requester(order.requester_id), event))
                outbox.append((None, event))

        elif order.status == RideStatus.ACTIVE:
            recorded = await orders.append_route_point(order.id, coordinate, speed, now)
            if recorded:
                event = Event(
                    EventName.DRIVER_LOCATION,
                    {
                        "order_id": order.id,
                        "driver_id": driver_id,
                        "lat": coordinate.latitude,
                        "lng": coordinate.longitude,
                        "speed": speed,
                        "heading": _heading(previous, coordinate),
                        "recorded_at": now,
                    },
                )
                outbox.append((Participant.requester(order.requester_id), event))
                outbox.append((None, event))

        if speed > self.max_speed_kmh and order.status in ENGAGED_STATUSES:
            violation = await self._record_violation(
                session, driver, order, coordinate, speed
            )

        await session.commit()

        for participant, event in outbox:
            if participant is None:
                await self.bus.notify_room(ADMIN_ROOM, event)
            else:
                await self.bus.notify(participant, event)

        if violation is not None:
            await self._announce_violation(violation)
            await session.commit()

        return LocationOutcome(
            reached=reached,
            sample_recorded=recorded,
            violation_id=violation.id if violation is not None else None,
        )

    # ── Speed violations ──────────────────────────────────────────────

    async def _record_violation(
        self,
        session: AsyncSession,
        driver: DriverModel,
        order: RideOrderModel,
        coordinate: Coordinate,
        speed: float,
    ) -> SpeedViolationModel:
        violation = await SpeedViolationRepository(session).create(
            SpeedViolationModel(
                order_id=order.id,
                driver_id=driver.id,
                requester_id=order.requester_id,
                speed=speed,
                max_allowed=self.max_speed_kmh,
                latitude=coordinate.latitude,
                longitude=coordinate.longitude,
            )
        )
        await DriverRepository(session).increment_violations(driver.id)
        logger.warning(
            "Speed violation: driver %s at %.1f km/h on order %s (limit %.0f)",
            driver.id,
            speed,
            order.id,
            self.max_speed_kmh,
        )
        return violation

    async def _announce_violation(self, violation: SpeedViolationModel) -> None:
        payload = {
            "violation_id": violation.id,
            "order_id": violation.order_id,
            "driver_id": violation.driver_id,
            "speed": violation.speed,
            "max_allowed": violation.max_allowed,
            "lat": violation.latitude,
            "lng": violation.longitude,
        }
        event = Event(EventName.SPEED_VIOLATION, payload)
        if violation.requester_id is not None:
            violation.notified_requester = await self.bus.notify(
                Participant.requester(violation.requester_id), event
            )
        violation.notified_admin = await self.bus.notify_room(ADMIN_ROOM, event) > 0
        await self.bus.notify(
            Participant.driver(violation.driver_id),
            Event(
                EventName.SPEED_WARNING,
                {
                    **payload,
                    "message": f"Slow down: {violation.speed:.0f} km/h exceeds "
                    f"the {violation.max_allowed:.0f} km/h limit",
                },
            ),
        )

    # ── Presence ──────────────────────────────────────────────────────

    async def go_online(
        self, driver_id: int, coordinate: Optional[Coordinate] = None
    ) -> DriverModel:
        async with self.session_factory() as session:
            drivers = DriverRepository(session)
            driver = await drivers.get_by_id(driver_id, fresh=True)
            if driver is None:
                raise NotEligible("Driver not found")
            reason = driver.to_entity().ineligibility_reason(self.clock())
            if reason:
                raise NotEligible(reason)

            if coordinate is not None:
                _check_coordinate(coordinate)
                await drivers.update_location(
                    driver_id,
                    coordinate,
                    self.clock(),
                    location_cell(
                        coordinate.latitude, coordinate.longitude, self.h3_resolution
                    ),
                    online=True,
                )
            else:
                await drivers.set_online(driver_id, True)
            await session.commit()
            logger.info("Driver %s is online", driver_id)
            return await drivers.get_by_id(driver_id, fresh=True)

    async def go_offline(self, driver_id: int) -> bool:
        async with self.session_factory() as session:
            changed = await DriverRepository(session).set_online(driver_id, False)
            await session.commit()
        if changed:
            logger.info("Driver %s is offline", driver_id)
        return changed

    async def update_location(
        self, driver_id: int, coordinate: Coordinate
    ) -> DriverModel:
        """Move the driver without touching the online flag."""
        _check_coordinate(coordinate)
        async with self.session_factory() as session:
            drivers = DriverRepository(session)
            updated = await drivers.update_location(
                driver_id,
                coordinate,
                self.clock(),
                location_cell(
                    coordinate.latitude, coordinate.longitude, self.h3_resolution
                ),
            )
            if not updated:
                raise NotEligible("Driver not found")
            await session.commit()
            return await drivers.get_by_id(driver_id, fresh=True)


def _heading(previous: Optional[Coordinate], current: Coordinate) -> Optional[float]:
    if previous is None or previous == current:
        return None
    return round(
        initial_bearing(
            previous.latitude, previous.longitude, current.latitude, current.longitude
        ),
        1,
    )
