"""Abstract base classes for the command bus.

The bus has one topic per machine id. A member joins a topic and gets a
Channel: an explicit subscription handle that publishes fire-and-forget
messages and yields a typed event stream. Delivery is at-most-once and
ordered only within one publisher's sequential calls.

Wire envelope (JSON)::

    {"event": "track", "payload": {"role": "agent", "joinedAt": "..."}}
    {"event": "command", "payload": {"type": "click", "button": "left"}, "sender": "k1"}
    {"event": "presence_sync", "payload": {"k1": [{"role": "agent", ...}]}}
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from deskrelay.domain.models import (
    CanonicalCommand,
    PresenceRecord,
    PresenceSnapshot,
    ScreenshotResponse,
    UnrecognizedCommand,
)

logger = logging.getLogger(__name__)

EVENT_COMMAND = "command"
EVENT_TRACK = "track"
EVENT_PRESENCE_SYNC = "presence_sync"

SCREENSHOT_RESPONSE_TYPE = "screenshot_response"


# ---------------------------------------------------------------------------
# Typed events
# ---------------------------------------------------------------------------


class CommandEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    command: CanonicalCommand
    sender: str | None = None


class ScreenshotEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    response: ScreenshotResponse
    sender: str | None = None


class PresenceSyncEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    snapshot: PresenceSnapshot


class DisconnectedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str = ""


BusEvent = Union[CommandEvent, ScreenshotEvent, PresenceSyncEvent, DisconnectedEvent]


# ---------------------------------------------------------------------------
# Wire helpers
# ---------------------------------------------------------------------------


def command_message(payload: dict[str, Any], sender: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"event": EVENT_COMMAND, "payload": payload}
    if sender is not None:
        message["sender"] = sender
    return message


def track_message(record: PresenceRecord) -> dict[str, Any]:
    return {"event": EVENT_TRACK, "payload": record.to_wire()}


def presence_sync_message(snapshot: PresenceSnapshot) -> dict[str, Any]:
    return {
        "event": EVENT_PRESENCE_SYNC,
        "payload": {key: [r.to_wire() for r in records] for key, records in snapshot.items()},
    }


def parse_message(message: dict[str, Any]) -> BusEvent | None:
    """Turn a wire message into a typed event.

    Unknown events and unrecognized commands are logged and skipped
    (returns None) so one bad message never stops a subscriber.
    """
    event = message.get("event")
    payload = message.get("payload")

    if event == EVENT_COMMAND:
        sender = message.get("sender")
        if isinstance(payload, dict) and payload.get("type") == SCREENSHOT_RESPONSE_TYPE:
            try:
                return ScreenshotEvent(
                    response=ScreenshotResponse.model_validate(payload), sender=sender
                )
            except ValidationError as e:
                logger.warning("Dropping malformed screenshot response: %s", e)
                return None
        try:
            return CommandEvent(command=CanonicalCommand.from_wire(payload), sender=sender)
        except UnrecognizedCommand as e:
            logger.warning("Dropping unrecognized command: %s", e)
            return None

    if event == EVENT_PRESENCE_SYNC:
        try:
            snapshot = {
                str(key): [PresenceRecord.model_validate(r) for r in records]
                for key, records in (payload or {}).items()
            }
        except (ValidationError, AttributeError, TypeError) as e:
            logger.warning("Dropping malformed presence sync: %s", e)
            return None
        return PresenceSyncEvent(snapshot=snapshot)

    logger.debug("Ignoring bus event %r", event)
    return None


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class Channel(ABC):
    """A joined topic: publish side plus a typed event stream.

    Example usage::

        async with await bus.join(machine_id) as channel:
            await channel.track(PresenceRecord(role=Role.CONTROLLER))
            await channel.send_command(CanonicalCommand(type="click", button="left"))
            async for event in channel.events():
                ...
    """

    def __init__(self, machine_id: str) -> None:
        self._machine_id = machine_id

    @property
    def machine_id(self) -> str:
        return self._machine_id

    @abstractmethod
    async def track(self, record: PresenceRecord) -> None:
        """Announce (or replace) this connection's presence record."""
        ...

    @abstractmethod
    async def publish(self, payload: dict[str, Any]) -> None:
        """Send a command-event payload to the other members.

        Raises:
            BusDisconnected: If the channel is closed or the link dropped.
        """
        ...

    @abstractmethod
    def events(self) -> AsyncIterator[BusEvent]:
        """Yield events until the channel closes.

        A lost connection ends the stream with a DisconnectedEvent; an
        explicit close() ends it silently.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Leave the topic. Safe to call more than once."""
        ...

    async def send_command(self, command: CanonicalCommand) -> None:
        await self.publish(command.to_wire())

    async def send_screenshot(self, response: ScreenshotResponse) -> None:
        await self.publish(response.to_wire())

    async def __aenter__(self) -> Channel:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()


class CommandBus(ABC):
    """Factory for channels on per-machine topics."""

    @abstractmethod
    async def join(self, machine_id: str) -> Channel:
        """Subscribe to the topic of ``machine_id``.

        Raises:
            BusDisconnected: If the bus cannot be reached.
        """
        ...


class BusDisconnected(Exception):
    """Raised when the bus link is unavailable."""

    def __init__(self, message: str, machine_id: str = "") -> None:
        super().__init__(message)
        self.machine_id = machine_id
