"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    SEARCHING = "SEARCHING"
    ACCEPTED = "ACCEPTED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SEARCHING: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.ACTIVE, RideStatus.CANCELLED},
    RideStatus.ACTIVE: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset(
    status for status, nxt in RIDE_TRANSITIONS.items() if not nxt
)

# Statuses in which a driver counts as engaged
ENGAGED_STATUSES = frozenset({RideStatus.ACCEPTED, RideStatus.ACTIVE})


def can_transition(current: RideStatus, target: RideStatus) -> bool:
    return target in RIDE_TRANSITIONS.get(current, set())


def sources_of(target: RideStatus) -> set[RideStatus]:
    """All statuses from which *target* is reachable in one step."""
    return {
        status for status, nxt in RIDE_TRANSITIONS.items() if target in nxt
    }


class VehicleClass(str, enum.Enum):
    CAR = "CAR"
    SUV = "SUV"
    LUXURY = "LUXURY"
    MINI_TRUCK = "MINI_TRUCK"
    HEAVY_VEHICLE = "HEAVY_VEHICLE"


class DropClassification(str, enum.Enum):
    VALID_DROP = "VALID_DROP"
    RETURNED_TO_PICKUP = "RETURNED_TO_PICKUP"
    RETURN_CHARGED = "RETURN_CHARGED"


class Role(str, enum.Enum):
    REQUESTER = "REQUESTER"
    DRIVER = "DRIVER"
    ADMIN = "ADMIN"


class LedgerEntryType(str, enum.Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"
