"""
Fare Engine  (Strategy Pattern)
===============================

Formula
-------
Billable_Hours = max(elapsed_hours, 1)

Base_Fare
    * hourly classes:  Hourly_Rate x Billable_Hours
    * heavy vehicle:   Block_Charge for anything up to one block (8 h);
                       beyond that, Block_Charge per full block plus
                       Block_Charge / Block_Hours per remaining hour

Return_Charges = Return_Distance x Rate_Per_KM   (RETURN_CHARGED drops only)
Final_Amount   = Base_Fare + Return_Charges
Commission     = Base_Fare x Commission_% / 100  (surcharge is never split)
Driver_Earning = Base_Fare - Commission

All money is rounded half-up to whole currency units.

Complexity: O(1) per fare.  ``FareEngine.calculate`` has no side effects.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping

from .enums import DropClassification

_WHOLE = Decimal("1")
_TENTH = Decimal("0.1")


def round_money(value: float | Decimal) -> Decimal:
    return Decimal(str(value)).quantize(_WHOLE, rounding=ROUND_HALF_UP)


def _round_tenth(value: float) -> Decimal:
    return Decimal(str(value)).quantize(_TENTH, rounding=ROUND_HALF_UP)


# ── Strategy hierarchy ────────────────────────────────────────────────


class BillingStrategy(ABC):
    @abstractmethod
    def base_fare(self, billable_hours: float) -> Decimal: ...


class HourlyBilling(BillingStrategy):
    def __init__(self, hourly_rate: float):
        self.hourly_rate = hourly_rate

    def base_fare(self, billable_hours: float) -> Decimal:
        return round_money(self.hourly_rate * billable_hours)


class BlockBilling(BillingStrategy):
    """Flat charge per block; the fractional tail is billed pro rata."""

    def __init__(self, block_charge: float, block_hours: float = 8.0):
        self.block_charge = block_charge
        self.block_hours = block_hours

    def base_fare(self, billable_hours: float) -> Decimal:
        if billable_hours <= self.block_hours:
            return round_money(self.block_charge)
        blocks = math.floor(billable_hours / self.block_hours)
        remainder = billable_hours - blocks * self.block_hours
        per_hour = self.block_charge / self.block_hours
        return round_money(blocks * self.block_charge + remainder * per_hour)


# ── Result ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FareBreakdown:
    hourly_rate: Decimal
    ride_hours: Decimal
    base_fare: Decimal
    return_distance_km: Decimal
    return_charges: Decimal
    final_amount: Decimal
    platform_commission: Decimal
    driver_earnings: Decimal


@dataclass(frozen=True)
class FareSchedule:
    hourly_rates: Mapping[str, float]
    default_hourly_rate: float = 200.0
    heavy_vehicle_class: str = "HEAVY_VEHICLE"
    heavy_block_hours: float = 8.0
    heavy_block_charge: float = 4800.0
    return_rate_per_km: float = 10.0
    commission_percent: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> FareSchedule:
        return cls(
            hourly_rates=dict(settings.hourly_rates),
            default_hourly_rate=settings.default_hourly_rate,
            heavy_vehicle_class=settings.heavy_vehicle_class,
            heavy_block_hours=settings.heavy_block_hours,
            heavy_block_charge=settings.heavy_block_charge,
            return_rate_per_km=settings.return_rate_per_km,
            commission_percent=settings.platform_commission_percent,
        )


# ── Engine facade ─────────────────────────────────────────────────────


class FareEngine:
    """High-level API used by ride completion and the rate card endpoint."""

    MINIMUM_BILLABLE_HOURS = 1.0

    def __init__(self, schedule: FareSchedule):
        self.schedule = schedule

    def hourly_rate(self, vehicle_class: str) -> float:
        return self.schedule.hourly_rates.get(
            vehicle_class, self.schedule.default_hourly_rate
        )

    def strategy_for(self, vehicle_class: str) -> BillingStrategy:
        if vehicle_class == self.schedule.heavy_vehicle_class:
            return BlockBilling(
                self.schedule.heavy_block_charge, self.schedule.heavy_block_hours
            )
        return HourlyBilling(self.hourly_rate(vehicle_class))

    @classmethod
    def billable_hours(cls, started_at: datetime, ended_at: datetime) -> float:
        elapsed = (ended_at - started_at).total_seconds() / 3600.0
        return max(elapsed, cls.MINIMUM_BILLABLE_HOURS)

    def return_charges(
        self, classification: DropClassification, return_distance_km: float
    ) -> Decimal:
        if classification != DropClassification.RETURN_CHARGED:
            return Decimal(0)
        if return_distance_km <= 0:
            return Decimal(0)
        return round_money(return_distance_km * self.schedule.return_rate_per_km)

    def calculate(
        self,
        started_at: datetime,
        ended_at: datetime,
        vehicle_class: str,
        classification: DropClassification,
        return_distance_km: float = 0.0,
    ) -> FareBreakdown:
        hours = self.billable_hours(started_at, ended_at)
        base = self.strategy_for(vehicle_class).base_fare(hours)
        surcharge = self.return_charges(classification, return_distance_km)
        commission = round_money(base * Decimal(str(self.schedule.commission_percent)) / 100)

        return FareBreakdown(
            hourly_rate=Decimal(str(self.hourly_rate(vehicle_class))),
            ride_hours=_round_tenth(hours),
            base_fare=base,
            return_distance_km=_round_tenth(return_distance_km),
            return_charges=surcharge,
            final_amount=base + surcharge,
            platform_commission=commission,
            driver_earnings=base - commission,
        )
