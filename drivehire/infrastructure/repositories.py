"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Repositories never commit; the calling
service decides the transaction boundary.

Every ride-order mutation is a single conditional ``UPDATE`` whose WHERE
clause carries the legal source statuses.  The returned boolean is the
compare-and-swap outcome: ``False`` means another writer got there first.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, Float, insert, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import (
    DriverModel,
    RequesterModel,
    RideOrderModel,
    RoutePointModel,
    SpeedViolationModel,
    WalletTransactionModel,
)
from drivehire.domain.entities import Coordinate
from drivehire.domain.enums import (
    ENGAGED_STATUSES,
    LedgerEntryType,
    RideStatus,
    Role,
    sources_of,
)


class RideOrderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_order(self, **fields: Any) -> RideOrderModel:
        order = RideOrderModel(status=RideStatus.SEARCHING, **fields)
        self.session.add(order)
        await self.session.flush()
        return order

    async def get_by_id(
        self, order_id: int, *, fresh: bool = False
    ) -> Optional[RideOrderModel]:
        """``fresh=True`` bypasses the identity map and re-reads the row."""
        return await self.session.get(
            RideOrderModel, order_id, populate_existing=fresh
        )

    async def get_with_route(self, order_id: int) -> Optional[RideOrderModel]:
        result = await self.session.execute(
            select(RideOrderModel)
            .where(RideOrderModel.id == order_id)
            .options(selectinload(RideOrderModel.route_points))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str) -> Optional[RideOrderModel]:
        result = await self.session.execute(
            select(RideOrderModel).where(RideOrderModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def transition(
        self,
        order_id: int,
        target: RideStatus,
        *,
        by_driver: Optional[int] = None,
        conditions: tuple = (),
        **values: Any,
    ) -> bool:
        """Atomically move *order_id* to *target* if its stored status allows it."""
        stmt = update(RideOrderModel).where(
            RideOrderModel.id == order_id,
            RideOrderModel.status.in_(sources_of(target)),
            *conditions,
        )
        if by_driver is not None:
            stmt = stmt.where(RideOrderModel.driver_id == by_driver)
        result = await self.session.execute(
            stmt.values(status=target, **values).execution_options(
                synchronize_session=False
            )
        )
        return result.rowcount == 1

    async def begin_return_leg(
        self, order_id: int, driver_id: int, at: datetime
    ) -> bool:
        result = await self.session.execute(
            update(RideOrderModel)
            .where(
                RideOrderModel.id == order_id,
                RideOrderModel.driver_id == driver_id,
                RideOrderModel.status == RideStatus.ACTIVE,
                RideOrderModel.is_round_trip.is_(True),
                RideOrderModel.is_return_leg.is_(False),
            )
            .values(is_return_leg=True, turnaround_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_driver_reached(
        self, order_id: int, driver_id: int, at: datetime
    ) -> bool:
        """Set the one-time arrival marker; only the first caller gets ``True``."""
        result = await self.session.execute(
            update(RideOrderModel)
            .where(
                RideOrderModel.id == order_id,
                RideOrderModel.driver_id == driver_id,
                RideOrderModel.status == RideStatus.ACCEPTED,
                RideOrderModel.driver_reached_at.is_(None),
            )
            .values(driver_reached_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def append_route_point(
        self, order_id: int, point: Coordinate, speed: float, at: datetime
    ) -> bool:
        """INSERT ... SELECT gated on the order being ACTIVE at write time."""
        sample = select(
            literal(order_id),
            literal(point.latitude, Float),
            literal(point.longitude, Float),
            literal(speed, Float),
            literal(at, DateTime(timezone=True)),
        ).select_from(RideOrderModel).where(
            RideOrderModel.id == order_id,
            RideOrderModel.status == RideStatus.ACTIVE,
        )
        result = await self.session.execute(
            insert(RoutePointModel.__table__).from_select(
                ["order_id", "latitude", "longitude", "speed", "recorded_at"],
                sample,
            )
        )
        return result.rowcount == 1

    async def engaged_driver_ids(self) -> set[int]:
        result = await self.session.execute(
            select(RideOrderModel.driver_id).where(
                RideOrderModel.status.in_(ENGAGED_STATUSES),
                RideOrderModel.driver_id.is_not(None),
            )
        )
        return set(result.scalars().all())

    async def list_for_requester(self, requester_id: int) -> list[RideOrderModel]:
        result = await self.session.execute(
            select(RideOrderModel)
            .where(RideOrderModel.requester_id == requester_id)
            .order_by(RideOrderModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_orders(
        self, status: Optional[RideStatus] = None, limit: int = 100
    ) -> list[RideOrderModel]:
        query = select(RideOrderModel).order_by(RideOrderModel.id.desc()).limit(limit)
        if status is not None:
            query = query.where(RideOrderModel.status == status)
        result = await self.session.execute(query)
        return list(result.scalars().all())


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, driver_id: int, *, fresh: bool = False
    ) -> Optional[DriverModel]:
        return await self.session.get(
            DriverModel, driver_id, populate_existing=fresh
        )

    async def get_candidates(self, cells: set[str]) -> list[DriverModel]:
        """Online, approved, unblocked drivers located in any of *cells*."""
        if not cells:
            return []
        result = await self.session.execute(
            select(DriverModel).where(
                DriverModel.h3_cell.in_(cells),
                DriverModel.is_online.is_(True),
                DriverModel.is_approved.is_(True),
                DriverModel.is_blocked.is_(False),
            )
        )
        return list(result.scalars().all())

    async def update_location(
        self,
        driver_id: int,
        point: Coordinate,
        at: datetime,
        cell: str,
        *,
        online: Optional[bool] = None,
    ) -> bool:
        values: dict[str, Any] = {
            "current_lat": point.latitude,
            "current_lng": point.longitude,
            "location_updated_at": at,
            "h3_cell": cell,
        }
        if online is not None:
            values["is_online"] = online
        return await self._update(driver_id, **values)

    async def set_online(self, driver_id: int, online: bool) -> bool:
        return await self._update(driver_id, is_online=online)

    async def increment_rides_assigned(self, driver_id: int) -> bool:
        """Take one unit of quota; 0 rows when the driver is already at the limit."""
        return await self._update(
            driver_id,
            DriverModel.rides_assigned < DriverModel.ride_limit,
            rides_assigned=DriverModel.rides_assigned + 1,
        )

    async def increment_violations(self, driver_id: int) -> bool:
        return await self._update(
            driver_id, speed_violation_count=DriverModel.speed_violation_count + 1
        )

    async def credit_earnings(self, driver_id: int, amount: Decimal) -> bool:
        return await self._update(
            driver_id,
            wallet_balance=DriverModel.wallet_balance + amount,
            total_earnings=DriverModel.total_earnings + amount,
            total_rides_completed=DriverModel.total_rides_completed + 1,
        )

    async def _update(self, driver_id: int, *conditions, **values: Any) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class RequesterRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, requester_id: int) -> Optional[RequesterModel]:
        return await self.session.get(RequesterModel, requester_id)

    async def debit(self, requester_id: int, amount: Decimal) -> bool:
        result = await self.session.execute(
            update(RequesterModel)
            .where(RequesterModel.id == requester_id)
            .values(wallet_balance=RequesterModel.wallet_balance - amount)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class LedgerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        *,
        role: Role,
        account_id: int,
        entry_type: LedgerEntryType,
        amount: Decimal,
        description: str,
        order_id: Optional[int] = None,
    ) -> WalletTransactionModel:
        entry = WalletTransactionModel(
            account_role=role,
            account_id=account_id,
            entry_type=entry_type,
            amount=amount,
            description=description,
            order_id=order_id,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for(
        self, role: Role, account_id: int
    ) -> list[WalletTransactionModel]:
        result = await self.session.execute(
            select(WalletTransactionModel)
            .where(
                WalletTransactionModel.account_role == role,
                WalletTransactionModel.account_id == account_id,
            )
            .order_by(WalletTransactionModel.id)
        )
        return list(result.scalars().all())


class SpeedViolationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, violation: SpeedViolationModel) -> SpeedViolationModel:
        self.session.add(violation)
        await self.session.flush()
        return violation

    async def list_recent(
        self, driver_id: Optional[int] = None, limit: int = 100
    ) -> list[SpeedViolationModel]:
        query = (
            select(SpeedViolationModel)
            .order_by(SpeedViolationModel.id.desc())
            .limit(limit)
        )
        if driver_id is not None:
            query = query.where(SpeedViolationModel.driver_id == driver_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())
