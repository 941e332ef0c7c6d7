"""
Great-circle geometry using the Haversine formula.

Assumption
----------
Distances are straight-line (great-circle) rather than road distances.
Drop verification, pickup arrival and the dispatch radius are all short-range
checks where the difference is small; no routing engine is consulted.

Complexity: O(1) per call.
"""

import math

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def haversine_m(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Same as :func:`haversine_km`, in metres."""
    return haversine_km(lat1, lng1, lat2, lng2) * 1000.0


def initial_bearing(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Initial compass bearing (0-360°, clockwise from north) from point 1 to 2."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlng = math.radians(lng2 - lng1)

    x = math.sin(dlng) * math.cos(lat2_r)
    y = math.cos(lat1_r) * math.sin(lat2_r) - math.sin(lat1_r) * math.cos(
        lat2_r
    ) * math.cos(dlng)
    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0
