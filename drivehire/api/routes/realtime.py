"""
Realtime channel
================

WS /ws/{role}/{user_id}

* Registers the socket on connect and removes it on disconnect.
* Admins join the ``admin`` room.
* Drivers stream ``{"event": "driver:location", "data": {...}}`` frames which
  are fed to the ``LocationMonitor``; a disconnecting driver goes offline.

Outbound frames share the same ``{"event", "data"}`` envelope.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from drivehire.api.dependencies import get_monitor, get_registry
from drivehire.domain.entities import Coordinate, Participant
from drivehire.domain.enums import Role
from drivehire.domain.errors import InvalidRequest
from drivehire.domain.events import EventName
from drivehire.infrastructure.realtime import ConnectionRegistry
from drivehire.services.location import LocationMonitor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _error(detail: str) -> dict:
    return {"event": "error", "data": {"detail": detail}}


@router.websocket("/ws/{role}/{user_id}")
async def realtime(
    websocket: WebSocket,
    role: str,
    user_id: int,
    registry: ConnectionRegistry = Depends(get_registry),
    monitor: LocationMonitor = Depends(get_monitor),
):
    try:
        participant = Participant(Role(role.upper()), user_id)
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    registry.register(participant, websocket)
    logger.info("%s connected", participant)
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await websocket.send_json(_error("Frames must be JSON"))
                continue
            if participant.role != Role.DRIVER:
                continue
            if not isinstance(frame, dict):
                continue
            if frame.get("event") != EventName.DRIVER_LOCATION.value:
                continue
            await _handle_location(websocket, monitor, participant.user_id, frame)
    except WebSocketDisconnect:
        pass
    finally:
        if registry.unregister(participant, websocket):
            logger.info("%s disconnected", participant)
            if participant.role == Role.DRIVER:
                await monitor.go_offline(participant.user_id)


async def _handle_location(
    websocket: WebSocket, monitor: LocationMonitor, driver_id: int, frame: dict
) -> None:
    data = frame.get("data") or {}
    try:
        coordinate = Coordinate(float(data["lat"]), float(data["lng"]))
        order_id = data.get("order_id")
        await monitor.report_location(
            driver_id,
            int(order_id) if order_id is not None else None,
            coordinate,
            data.get("speed"),
        )
    except (KeyError, TypeError, ValueError):
        await websocket.send_json(_error("lat and lng are required"))
    except InvalidRequest as exc:
        await websocket.send_json(_error(str(exc)))
