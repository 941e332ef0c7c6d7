"""
Realtime delivery: connection registry + event bus.

* ``ConnectionRegistry`` tracks the WebSocket of every participant connected
  to *this* process.  Connections are registered on connect and removed on
  disconnect; admins also join the ``admin`` room.
* ``EventBus`` is what services depend on.  ``LocalEventBus`` delivers
  straight to the registry; ``RedisEventBus`` publishes on a pub/sub channel
  so that every API process delivers to its own local connections.

Delivery is at-most-once: an offline recipient simply misses the event.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Optional

import redis.asyncio as aioredis
from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from drivehire.domain.entities import Participant
from drivehire.domain.enums import Role
from drivehire.domain.events import ADMIN_ROOM, Event

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._connections: dict[Participant, WebSocket] = {}
        self._rooms: dict[str, set[Participant]] = defaultdict(set)

    def register(self, participant: Participant, websocket: WebSocket) -> None:
        previous = self._connections.get(participant)
        if previous is not None and previous is not websocket:
            logger.info("Replacing existing connection for %s", participant)
        self._connections[participant] = websocket
        if participant.role == Role.ADMIN:
            self._rooms[ADMIN_ROOM].add(participant)

    def unregister(self, participant: Participant, websocket: WebSocket) -> bool:
        """Drop *participant* unless a newer socket has already replaced it."""
        if self._connections.get(participant) is not websocket:
            return False
        del self._connections[participant]
        for members in self._rooms.values():
            members.discard(participant)
        return True

    def is_connected(self, participant: Participant) -> bool:
        return participant in self._connections

    async def deliver(self, participant: Participant, message: dict[str, Any]) -> bool:
        websocket = self._connections.get(participant)
        if websocket is None:
            return False
        try:
            await websocket.send_json(jsonable_encoder(message))
        except Exception:
            logger.warning("Dropping dead connection for %s", participant)
            self.unregister(participant, websocket)
            return False
        return True

    async def deliver_room(self, room: str, message: dict[str, Any]) -> int:
        delivered = 0
        for participant in list(self._rooms.get(room, ())):
            if await self.deliver(participant, message):
                delivered += 1
        return delivered


# ── Event bus ─────────────────────────────────────────────────────────


class EventBus(ABC):
    @abstractmethod
    async def send(self, participant: Participant, event: Event) -> bool:
        """Send to one participant.  Returns whether it was handed off."""

    @abstractmethod
    async def broadcast(self, room: str, event: Event) -> int:
        """Send to every member of *room*."""

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    # Used by services: delivery failures are logged and swallowed.

    async def notify(self, participant: Participant, event: Event) -> bool:
        try:
            return await self.send(participant, event)
        except Exception:
            logger.exception("Failed to deliver %s to %s", event.name.value, participant)
            return False

    async def notify_room(self, room: str, event: Event) -> int:
        try:
            return await self.broadcast(room, event)
        except Exception:
            logger.exception("Failed to broadcast %s to room %s", event.name.value, room)
            return 0


class LocalEventBus(EventBus):
    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def send(self, participant: Participant, event: Event) -> bool:
        return await self.registry.deliver(participant, event.to_message())

    async def broadcast(self, room: str, event: Event) -> int:
        return await self.registry.deliver_room(room, event.to_message())


class RedisEventBus(EventBus):
    """Fan events out to every process through Redis pub/sub."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        client: aioredis.Redis,
        channel: str,
    ):
        self.registry = registry
        self.redis = client
        self.channel = channel
        self._task: Optional[asyncio.Task] = None

    async def send(self, participant: Participant, event: Event) -> bool:
        receivers = await self._publish(
            {
                "to": {"role": participant.role.value, "user_id": participant.user_id},
                "message": event.to_message(),
            }
        )
        return receivers > 0

    async def broadcast(self, room: str, event: Event) -> int:
        # number of relaying processes, not of sockets
        return await self._publish({"room": room, "message": event.to_message()})

    async def _publish(self, envelope: dict[str, Any]) -> int:
        return await self.redis.publish(
            self.channel, json.dumps(jsonable_encoder(envelope))
        )

    async def start(self) -> None:
        self._task = asyncio.create_task(self._listen())
        logger.info("Redis event relay listening on %s", self.channel)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Redis event relay stopped")

    async def _listen(self) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            async for raw in pubsub.listen():
                if raw.get("type") != "message":
                    continue
                try:
                    await self.dispatch_envelope(json.loads(raw["data"]))
                except Exception:
                    logger.exception("Failed to deliver relayed event")
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def dispatch_envelope(self, envelope: dict[str, Any]) -> None:
        message = envelope["message"]
        if "room" in envelope:
            await self.registry.deliver_room(envelope["room"], message)
            return
        target = envelope["to"]
        participant = Participant(Role(target["role"]), int(target["user_id"]))
        await self.registry.deliver(participant, message)
