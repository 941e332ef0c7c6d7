"""
Drop verification at ride end.

Priority order: the drop target is checked first, so a point close to both
the drop and the pickup is a ``VALID_DROP``.  For round trips the caller
passes the pickup as the drop target.
"""

from __future__ import annotations

from typing import Optional

from .entities import Coordinate
from .enums import DropClassification

DEFAULT_THRESHOLD_M = 200.0


def classify_drop(
    end: Coordinate,
    drop_target: Coordinate,
    pickup: Coordinate,
    threshold_m: float = DEFAULT_THRESHOLD_M,
) -> DropClassification:
    if end.distance_m(drop_target) <= threshold_m:
        return DropClassification.VALID_DROP
    if end.distance_m(pickup) <= threshold_m:
        return DropClassification.RETURNED_TO_PICKUP
    return DropClassification.RETURN_CHARGED


def return_distance_km(
    drop_target: Coordinate, home: Optional[Coordinate]
) -> float:
    """Billable distance from the drop target back to the driver's home."""
    if home is None:
        return 0.0
    return drop_target.distance_km(home)
