"""
Dispatch Scheduler
==================

One cancellable ``asyncio.Task`` per SEARCHING order.

Protocol per order
------------------
1. Notify every driver eligible within ``initial_radius_km`` (5 km).
2. Sleep ``expansion_delay`` (30 s).
3. Re-read the order from a fresh session.  Only if it is still SEARCHING,
   notify every driver eligible within ``expanded_radius_km`` (10 km) with
   ``expanded=True``.

Concurrency safety
------------------
* The task is cancelled on accept and on cancel, but cancellation can lose
  the race with the timer firing; step 3 therefore never trusts earlier
  state and re-reads the authoritative status.
* Notifications are informational.  A late accept against a non-SEARCHING
  order is rejected by the conditional UPDATE in ``RideLifecycle``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drivehire.config import Settings, settings as default_settings
from drivehire.domain.entities import Participant, utcnow
from drivehire.domain.enums import RideStatus
from drivehire.domain.events import Event, EventName
from drivehire.domain.matching import candidate_cells, find_eligible
from drivehire.infrastructure.models import RideOrderModel
from drivehire.infrastructure.realtime import EventBus
from drivehire.infrastructure.repositories import (
    DriverRepository,
    RideOrderRepository,
)

logger = logging.getLogger(__name__)


def assignment_payload(order: RideOrderModel, *, expanded: bool) -> dict:
    return {
        "order_id": order.id,
        "vehicle_class": order.vehicle_class,
        "pickup": {
            "lat": order.pickup_lat,
            "lng": order.pickup_lng,
            "address": order.pickup_address,
        },
        "drop": {
            "lat": order.drop_lat,
            "lng": order.drop_lng,
            "address": order.drop_address,
        },
        "scheduled_at": order.scheduled_at,
        "hourly_rate": order.hourly_rate,
        "is_round_trip": order.is_round_trip,
        "expanded": expanded,
    }


class DispatchScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: EventBus,
        config: Settings = default_settings,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.bus = bus
        self.initial_radius_km = config.initial_search_radius_km
        self.expanded_radius_km = config.expanded_search_radius_km
        self.expansion_delay = config.search_expansion_delay_seconds
        self.max_location_age = config.location_max_age_seconds
        self.h3_resolution = config.h3_resolution
        self.clock = clock
        self._tasks: dict[int, asyncio.Task] = {}

    # ── Public API ────────────────────────────────────────────────────

    def schedule(self, order_id: int) -> asyncio.Task:
        self.cancel(order_id)
        task = asyncio.create_task(self._run(order_id))
        self._tasks[order_id] = task
        task.add_done_callback(lambda t: self._forget(order_id, t))
        return task

    def cancel(self, order_id: int) -> bool:
        task = self._tasks.pop(order_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("Dispatch timer cancelled for order %s", order_id)
        return True

    def pending(self) -> set[int]:
        return {oid for oid, t in self._tasks.items() if not t.done()}

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Dispatch scheduler stopped (%d timers cancelled)", len(tasks))

    async def notify_eligible(
        self, order_id: int, radius_km: float, *, expanded: bool
    ) -> list[int]:
        """Notify drivers eligible for *order_id* if it is still SEARCHING.

        Returns the ids of the drivers notified.
        """
        async with self.session_factory() as session:
            orders = RideOrderRepository(session)
            order = await orders.get_by_id(order_id, fresh=True)
            if order is None or order.status != RideStatus.SEARCHING:
                logger.info(
                    "Order %s no longer searching; skipping %s dispatch",
                    order_id,
                    "expanded" if expanded else "initial",
                )
                return []

            pickup = order.pickup
            cells = candidate_cells(pickup, radius_km, self.h3_resolution)
            candidates = await DriverRepository(session).get_candidates(cells)
            busy = await orders.engaged_driver_ids()
            eligible = find_eligible(
                [d.to_entity() for d in candidates],
                pickup,
                order.vehicle_class.value,
                radius_km,
                busy,
                self.clock(),
                self.max_location_age,
            )
            event = Event(
                EventName.NEW_ASSIGNMENT,
                assignment_payload(order, expanded=expanded),
            )

        notified = []
        for driver in eligible:
            await self.bus.notify(Participant.driver(driver.id), event)
            notified.append(driver.id)
        logger.info(
            "Order %s dispatched to %d driver(s) within %.1f km%s",
            order_id,
            len(notified),
            radius_km,
            " (expanded)" if expanded else "",
        )
        return notified

    # ── Internals ─────────────────────────────────────────────────────

    async def _run(self, order_id: int) -> None:
        try:
            await self.notify_eligible(
                order_id, self.initial_radius_km, expanded=False
            )
            await asyncio.sleep(self.expansion_delay)
            await self.notify_eligible(
                order_id, self.expanded_radius_km, expanded=True
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Unhandled error dispatching order %s", order_id)

    def _forget(self, order_id: int, task: asyncio.Task) -> None:
        if self._tasks.get(order_id) is task:
            del self._tasks[order_id]
