"""
Concurrency safety tests.

Every test drives the service through independent sessions on a file-backed
database, so the conditional UPDATEs really race.

Demonstrates:
1. Of N drivers accepting the same order at once, exactly one wins.
2. Concurrent end-ride calls settle the fare exactly once.
3. A cancel racing an accept leaves a consistent order.
4. Idempotency keys prevent double-booking on concurrent retries.
5. One driver accepting several orders at once never exceeds their quota.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from drivehire.domain.entities import Participant
from drivehire.domain.enums import RideStatus, VehicleClass
from drivehire.domain.errors import Conflict, NotEligible, RideNoLongerAvailable
from drivehire.infrastructure.models import DriverModel, RequesterModel, RideOrderModel
from drivehire.services.rides import RideLifecycle
from tests.conftest import DROP, PICKUP


@pytest.fixture
def run(session_factory, bus, dispatcher, config, clock):
    """Call a ``RideLifecycle`` method on a lifecycle with its own session."""

    async def _run(op: str, *args, **kwargs):
        async with session_factory() as session:
            rides = RideLifecycle(session, bus, dispatcher, config=config, clock=clock)
            return await getattr(rides, op)(*args, **kwargs)

    return _run


@pytest.fixture
def create_order(run, clock):
    async def _create(requester_id: int, **kwargs) -> int:
        created = await run(
            "create_ride",
            requester_id,
            VehicleClass.CAR,
            PICKUP,
            DROP,
            clock(),
            **kwargs,
        )
        return created.order.id

    return _create


class TestConcurrentAccept:
    @pytest.mark.asyncio
    async def test_exactly_one_driver_wins(
        self, run, create_order, make_requester, make_driver, session_factory
    ):
        requester = await make_requester()
        drivers = [await make_driver(name=f"Driver {i}") for i in range(6)]
        order_id = await create_order(requester)

        results = await asyncio.gather(
            *(run("accept_ride", order_id, d) for d in drivers),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, RideOrderModel)]
        losers = [r for r in results if isinstance(r, RideNoLongerAvailable)]
        assert len(winners) == 1
        assert len(losers) == len(drivers) - 1

        async with session_factory() as session:
            order = await session.get(RideOrderModel, order_id)
            assigned = [
                (await session.get(DriverModel, d)).rides_assigned for d in drivers
            ]
        assert order.status == RideStatus.ACCEPTED
        assert order.driver_id == winners[0].driver_id
        assert sorted(assigned) == [0, 0, 0, 0, 0, 1]


class TestConcurrentSettlement:
    @pytest.mark.asyncio
    async def test_end_ride_settles_once(
        self, run, create_order, make_requester, make_driver, clock, session_factory
    ):
        requester = await make_requester(wallet_balance=5000)
        driver = await make_driver()
        order_id = await create_order(requester)
        await run("accept_ride", order_id, driver)
        await run("start_ride", order_id, driver, PICKUP)
        clock.advance(hours=3)

        results = await asyncio.gather(
            *(run("end_ride", order_id, driver, DROP) for _ in range(4)),
            return_exceptions=True,
        )

        settled = [r for r in results if not isinstance(r, BaseException)]
        conflicts = [r for r in results if isinstance(r, Conflict)]
        assert len(settled) == 1
        assert len(conflicts) == 3

        async with session_factory() as session:
            wallet = (await session.get(RequesterModel, requester)).wallet_balance
            driver_row = await session.get(DriverModel, driver)
        assert wallet == Decimal(4400)
        assert driver_row.total_earnings == Decimal(540)
        assert driver_row.total_rides_completed == 1


class TestCancelRacesAccept:
    @pytest.mark.asyncio
    async def test_driver_assigned_only_if_accept_won(
        self, run, create_order, make_requester, make_driver, session_factory
    ):
        requester = await make_requester()
        driver = await make_driver()
        order_id = await create_order(requester)

        accepted, cancelled = await asyncio.gather(
            run("accept_ride", order_id, driver),
            run("cancel_ride", order_id, Participant.requester(requester)),
            return_exceptions=True,
        )

        async with session_factory() as session:
            order = await session.get(RideOrderModel, order_id)

        # a requester may cancel an accepted ride, so the cancel always lands
        assert isinstance(cancelled, RideOrderModel)
        assert order.status == RideStatus.CANCELLED
        if isinstance(accepted, RideOrderModel):
            assert order.driver_id == driver
        else:
            assert isinstance(accepted, RideNoLongerAvailable)
            assert order.driver_id is None


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_retries_with_same_key_create_one_order(
        self, create_order, make_requester, dispatcher, session_factory
    ):
        requester = await make_requester()

        ids = await asyncio.gather(
            *(create_order(requester, idempotency_key="same-request") for _ in range(3))
        )

        assert len(set(ids)) == 1
        assert dispatcher.scheduled == [ids[0]]


class TestQuotaUnderConcurrentAccepts:
    @pytest.mark.asyncio
    async def test_driver_cannot_exceed_ride_limit(
        self, run, create_order, make_requester, make_driver, session_factory
    ):
        requester = await make_requester()
        driver = await make_driver(ride_limit=1)
        orders = [await create_order(requester) for _ in range(2)]

        results = await asyncio.gather(
            *(run("accept_ride", order_id, driver) for order_id in orders),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, RideOrderModel)]
        rejected = [r for r in results if isinstance(r, NotEligible)]
        assert len(winners) == 1
        assert len(rejected) == 1

        async with session_factory() as session:
            driver_row = await session.get(DriverModel, driver)
            rows = [await session.get(RideOrderModel, o) for o in orders]
        assert driver_row.rides_assigned == 1
        loser = next(o for o in rows if o.id != winners[0].id)
        assert loser.status == RideStatus.SEARCHING
        assert loser.driver_id is None
