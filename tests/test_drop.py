"""Unit tests for drop classification and the billable return distance."""

import pytest

from drivehire.domain.drop import classify_drop, return_distance_km
from drivehire.domain.entities import Coordinate
from drivehire.domain.enums import DropClassification

PICKUP = Coordinate(17.40, 78.48)
DROP = Coordinate(17.45, 78.50)


class TestClassifyDrop:
    def test_exactly_at_drop(self):
        assert classify_drop(DROP, DROP, PICKUP) == DropClassification.VALID_DROP

    def test_within_threshold_of_drop(self):
        near = Coordinate(17.4515, 78.50)  # ~167 m
        assert classify_drop(near, DROP, PICKUP) == DropClassification.VALID_DROP

    def test_just_outside_threshold(self):
        outside = Coordinate(17.4520, 78.50)  # ~222 m
        assert classify_drop(outside, DROP, PICKUP) == DropClassification.RETURN_CHARGED

    def test_back_at_pickup(self):
        assert (
            classify_drop(Coordinate(17.4005, 78.48), DROP, PICKUP)
            == DropClassification.RETURNED_TO_PICKUP
        )

    def test_far_from_both(self):
        elsewhere = Coordinate(17.36, 78.48)  # ~4.4 km south of pickup
        assert classify_drop(elsewhere, DROP, PICKUP) == DropClassification.RETURN_CHARGED

    def test_drop_checked_before_pickup(self):
        """A point near both drop and pickup is a valid drop."""
        pickup = Coordinate(17.4000, 78.4800)
        drop = Coordinate(17.4010, 78.4800)  # ~111 m apart
        end = Coordinate(17.4005, 78.4800)
        assert classify_drop(end, drop, pickup) == DropClassification.VALID_DROP

    def test_round_trip_uses_pickup_as_target(self):
        assert classify_drop(PICKUP, PICKUP, PICKUP) == DropClassification.VALID_DROP

    def test_custom_threshold(self):
        near = Coordinate(17.4515, 78.50)
        assert (
            classify_drop(near, DROP, PICKUP, threshold_m=100)
            == DropClassification.RETURN_CHARGED
        )


class TestReturnDistance:
    def test_no_home_is_zero(self):
        assert return_distance_km(DROP, None) == 0.0

    def test_distance_to_home(self):
        home = Coordinate(17.50, 78.50)  # ~5.6 km north of drop
        assert return_distance_km(DROP, home) == pytest.approx(5.56, abs=0.01)
