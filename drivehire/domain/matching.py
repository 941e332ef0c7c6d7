"""
Driver Eligibility & Candidate Selection
=======================================

1. **Spatial prefilter** -- H3 hexagons at resolution 7 (~1.2 km edge).
   The driver table stores each driver's current cell; the repository only
   loads drivers whose cell lies in the grid disk covering the radius.
2. **Exact cut** -- every candidate is re-checked with the Haversine
   distance against ``radius_km`` together with the eligibility rules.

Eligibility
-----------
approved AND NOT blocked AND online AND NOT engaged
AND skill contains vehicle_class AND location fresh
AND subscription unexpired AND rides_assigned < ride_limit
AND distance(current_location, pickup) <= radius_km

Complexity
----------
* ``candidate_cells``: O(k²) cells for ring size k = ceil(r / edge) + 1
* ``find_eligible``:   O(N) over the prefiltered drivers

The result is a set, not a ranking: every eligible driver is notified.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable

import h3

from .entities import Coordinate, DriverState


def location_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def candidate_cells(
    pickup: Coordinate, radius_km: float, resolution: int = 7
) -> set[str]:
    """H3 cells that together cover every point within *radius_km* of pickup."""
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    k = math.ceil(radius_km / edge_km) + 1
    origin = location_cell(pickup.latitude, pickup.longitude, resolution)
    return set(h3.grid_disk(origin, k))


def is_eligible(
    driver: DriverState,
    pickup: Coordinate,
    vehicle_class: str,
    radius_km: float,
    excluded_ids: set[int],
    now: datetime,
    max_location_age_seconds: float = 300,
) -> bool:
    if not driver.is_approved or driver.is_blocked or not driver.is_online:
        return False
    if driver.id in excluded_ids:
        return False
    if not driver.can_operate(vehicle_class):
        return False
    if not driver.has_fresh_location(now, max_location_age_seconds):
        return False
    if not driver.has_active_subscription(now) or not driver.has_quota():
        return False
    return driver.current_location.distance_km(pickup) <= radius_km


def find_eligible(
    drivers: Iterable[DriverState],
    pickup: Coordinate,
    vehicle_class: str,
    radius_km: float,
    excluded_ids: set[int],
    now: datetime,
    max_location_age_seconds: float = 300,
) -> list[DriverState]:
    return [
        d
        for d in drivers
        if is_eligible(
            d,
            pickup,
            vehicle_class,
            radius_km,
            excluded_ids,
            now,
            max_location_age_seconds,
        )
    ]
