"""WebSocket command bus.

Connects to the relay server's ``/ws/{machine_id}`` route, which hosts
one topic per machine. Messages are JSON text frames in the envelope
described in :mod:`deskrelay.bus.base`.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from deskrelay.bus.base import (
    BusDisconnected,
    BusEvent,
    Channel,
    CommandBus,
    DisconnectedEvent,
    command_message,
    parse_message,
    track_message,
)
from deskrelay.domain.models import PresenceRecord

logger = logging.getLogger(__name__)


class WebSocketBus(CommandBus):
    """Joins topics hosted by a deskrelay relay server."""

    def __init__(
        self,
        url: str = "ws://localhost:8765",
        open_timeout: float = 10.0,
        ping_interval: float | None = 20.0,
    ) -> None:
        self._url = url.rstrip("/")
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval

    async def join(self, machine_id: str) -> WebSocketChannel:
        uri = f"{self._url}/ws/{machine_id}"
        try:
            ws = await websockets.connect(
                uri,
                open_timeout=self._open_timeout,
                ping_interval=self._ping_interval,
            )
        except (OSError, TimeoutError, InvalidHandshake, InvalidURI) as e:
            raise BusDisconnected(
                f"Failed to connect to relay at {uri}: {e}", machine_id=machine_id
            ) from e
        logger.info("Joined topic %s on %s", machine_id, self._url)
        return WebSocketChannel(machine_id, ws)


class WebSocketChannel(Channel):
    """A topic subscription over one WebSocket connection."""

    def __init__(self, machine_id: str, ws: Any) -> None:
        super().__init__(machine_id)
        self._ws = ws
        self._closing = False

    async def track(self, record: PresenceRecord) -> None:
        await self._send(track_message(record))

    async def publish(self, payload: dict[str, Any]) -> None:
        await self._send(command_message(payload))

    async def events(self) -> AsyncIterator[BusEvent]:
        reason = "closed by relay"
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.debug("Ignoring non-JSON frame on %s", self.machine_id)
                    continue
                if not isinstance(message, dict):
                    continue
                event = parse_message(message)
                if event is not None:
                    yield event
        except ConnectionClosed as e:
            reason = str(e) or reason
        if not self._closing:
            logger.warning("Bus connection for %s lost: %s", self.machine_id, reason)
            yield DisconnectedEvent(reason=reason)

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        await self._ws.close()

    async def _send(self, message: dict[str, Any]) -> None:
        if self._closing:
            raise BusDisconnected("Channel is closed", machine_id=self.machine_id)
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            raise BusDisconnected(
                f"Bus connection lost: {e}", machine_id=self.machine_id
            ) from e
