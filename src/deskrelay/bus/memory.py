"""Same-process command bus.

Messages travel in their wire form and are parsed on delivery, so the
in-memory bus behaves like the WebSocket one: a publisher does not hear
its own commands, every track triggers a full presence sync to all
members, and a full subscriber queue drops the message.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, AsyncIterator

from deskrelay.bus.base import (
    BusDisconnected,
    BusEvent,
    Channel,
    CommandBus,
    DisconnectedEvent,
    command_message,
    parse_message,
    presence_sync_message,
)
from deskrelay.domain.models import PresenceRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE = 512

_CLOSED = object()


class InMemoryBus(CommandBus):
    """Routes messages between channels living in one event loop."""

    def __init__(self, max_queue: int = DEFAULT_MAX_QUEUE) -> None:
        self._max_queue = max_queue
        self._topics: dict[str, dict[str, MemoryChannel]] = {}

    async def join(self, machine_id: str) -> MemoryChannel:
        key = uuid.uuid4().hex[:12]
        channel = MemoryChannel(self, machine_id, key, max_queue=self._max_queue)
        self._topics.setdefault(machine_id, {})[key] = channel
        logger.debug("Channel %s joined topic %s", key, machine_id)
        return channel

    def members(self, machine_id: str) -> list[str]:
        return list(self._topics.get(machine_id, {}))

    def disconnect(self, machine_id: str, reason: str = "connection lost") -> None:
        """Drop every member of a topic as if the link had failed."""
        for channel in list(self._topics.get(machine_id, {}).values()):
            channel.connection_lost(reason)

    def _broadcast(self, machine_id: str, message: dict[str, Any], exclude: str | None = None) -> None:
        for key, channel in list(self._topics.get(machine_id, {}).items()):
            if key != exclude:
                channel._deliver(message)

    def _sync(self, machine_id: str) -> None:
        snapshot = {
            key: [channel.record]
            for key, channel in self._topics.get(machine_id, {}).items()
            if channel.record is not None
        }
        self._broadcast(machine_id, presence_sync_message(snapshot))

    def _leave(self, channel: MemoryChannel) -> None:
        topic = self._topics.get(channel.machine_id, {})
        if topic.pop(channel.key, None) is not None:
            self._sync(channel.machine_id)
        if not topic:
            self._topics.pop(channel.machine_id, None)


class MemoryChannel(Channel):
    """One member of an InMemoryBus topic."""

    def __init__(self, bus: InMemoryBus, machine_id: str, key: str, max_queue: int = DEFAULT_MAX_QUEUE) -> None:
        super().__init__(machine_id)
        self._bus = bus
        self._key = key
        self._max_queue = max_queue
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._lost_reason: str | None = None
        self.record: PresenceRecord | None = None

    @property
    def key(self) -> str:
        return self._key

    async def track(self, record: PresenceRecord) -> None:
        self._ensure_open()
        self.record = record
        self._bus._sync(self.machine_id)

    async def publish(self, payload: dict[str, Any]) -> None:
        self._ensure_open()
        self._bus._broadcast(self.machine_id, command_message(payload, sender=self._key), exclude=self._key)

    async def events(self) -> AsyncIterator[BusEvent]:
        while True:
            message = await self._queue.get()
            if message is _CLOSED:
                if self._lost_reason is not None:
                    yield DisconnectedEvent(reason=self._lost_reason)
                return
            event = parse_message(message)
            if event is not None:
                yield event

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._leave(self)
        self._queue.put_nowait(_CLOSED)

    def connection_lost(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self._lost_reason = reason
        self._bus._leave(self)
        self._queue.put_nowait(_CLOSED)

    def _deliver(self, message: dict[str, Any]) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self._max_queue:
            logger.warning("Channel %s queue full, dropping %s", self._key, message.get("event"))
            return
        self._queue.put_nowait(message)

    def _ensure_open(self) -> None:
        if self._closed:
            raise BusDisconnected("Channel is closed", machine_id=self.machine_id)
