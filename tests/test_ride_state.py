"""Unit tests for the ride status transition table."""

import pytest

from drivehire.domain.enums import (
    ENGAGED_STATUSES,
    RIDE_TRANSITIONS,
    TERMINAL_STATUSES,
    RideStatus,
    can_transition,
    sources_of,
)


class TestRideStateMachine:
    # ── Valid transitions ─────────────────────────────────────────

    @pytest.mark.parametrize(
        "current, target",
        [
            (RideStatus.SEARCHING, RideStatus.ACCEPTED),
            (RideStatus.ACCEPTED, RideStatus.ACTIVE),
            (RideStatus.ACTIVE, RideStatus.COMPLETED),
            (RideStatus.SEARCHING, RideStatus.CANCELLED),
            (RideStatus.ACCEPTED, RideStatus.CANCELLED),
            (RideStatus.ACTIVE, RideStatus.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    # ── Invalid transitions ───────────────────────────────────────

    @pytest.mark.parametrize(
        "current, target",
        [
            (RideStatus.SEARCHING, RideStatus.ACTIVE),
            (RideStatus.SEARCHING, RideStatus.COMPLETED),
            (RideStatus.ACCEPTED, RideStatus.COMPLETED),
            (RideStatus.ACTIVE, RideStatus.ACCEPTED),
            (RideStatus.ACCEPTED, RideStatus.SEARCHING),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_statuses_have_no_exit(self):
        assert TERMINAL_STATUSES == {RideStatus.COMPLETED, RideStatus.CANCELLED}
        for status in TERMINAL_STATUSES:
            assert all(not can_transition(status, t) for t in RideStatus)

    # ── CAS source sets ───────────────────────────────────────────

    def test_sources_of_accept(self):
        assert sources_of(RideStatus.ACCEPTED) == {RideStatus.SEARCHING}

    def test_sources_of_complete(self):
        assert sources_of(RideStatus.COMPLETED) == {RideStatus.ACTIVE}

    def test_sources_of_cancel_are_all_non_terminal(self):
        assert sources_of(RideStatus.CANCELLED) == (
            set(RIDE_TRANSITIONS) - TERMINAL_STATUSES
        )

    def test_engaged_statuses(self):
        assert ENGAGED_STATUSES == {RideStatus.ACCEPTED, RideStatus.ACTIVE}
