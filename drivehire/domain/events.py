"""Outbound realtime events (fire-and-forget, at-most-once)."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

ADMIN_ROOM = "admin"


class EventName(str, enum.Enum):
    NEW_ASSIGNMENT = "ride:new_assignment"
    RIDE_ACCEPTED = "ride:accepted"
    RIDE_STARTED = "ride:started"
    RIDE_TURNAROUND = "ride:turnaround"
    RIDE_COMPLETED = "ride:completed"
    RIDE_CANCELLED = "ride:cancelled"
    DRIVER_REACHED = "ride:driver_reached"
    DRIVER_LOCATION = "driver:location"
    SPEED_VIOLATION = "speed:violation"
    SPEED_WARNING = "speed:warning"


@dataclass(frozen=True)
class Event:
    name: EventName
    payload: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {"event": self.name.value, "data": self.payload}
