"""Controller-side client.

Claims a machine, joins its topic as a controller, publishes commands
and requests screenshots. One background reader task consumes the
channel's event stream and feeds screenshot responses to the
correlator.
"""

from __future__ import annotations

import asyncio
import logging

from deskrelay.bus.base import (
    BusDisconnected,
    Channel,
    CommandBus,
    DisconnectedEvent,
    PresenceSyncEvent,
    ScreenshotEvent,
)
from deskrelay.controller.correlation import ScreenshotCorrelator
from deskrelay.domain.models import (
    CanonicalCommand,
    CommandKind,
    PresenceRecord,
    PresenceSnapshot,
    Role,
    ScreenshotResponse,
    Session,
)
from deskrelay.registry.base import DEFAULT_DISPLAY_NAME, SessionRegistry

logger = logging.getLogger(__name__)


class ControllerClient:
    """Drives one agent over the command bus.

    Example usage::

        client = ControllerClient(bus, registry, owner_id="user-42")
        session = await client.claim("482913")
        async with client.connect(session.machine_id):
            shot = await client.request_screenshot()
            await client.send(CanonicalCommand(type="click", button="left"))
    """

    def __init__(
        self,
        bus: CommandBus,
        registry: SessionRegistry,
        owner_id: str,
        screenshot_timeout: float = 15.0,
        correlator: ScreenshotCorrelator | None = None,
    ) -> None:
        self._bus = bus
        self._registry = registry
        self._owner_id = owner_id
        self._screenshot_timeout = screenshot_timeout
        self._correlator = correlator or ScreenshotCorrelator()
        self._channel: Channel | None = None
        self._reader: asyncio.Task[None] | None = None
        self._snapshot: PresenceSnapshot = {}

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def is_connected(self) -> bool:
        return self._channel is not None

    @property
    def snapshot(self) -> PresenceSnapshot:
        return dict(self._snapshot)

    @property
    def agent_present(self) -> bool:
        return any(r.role == Role.AGENT for records in self._snapshot.values() for r in records)

    async def claim(self, pairing_code: str, display_name: str = DEFAULT_DISPLAY_NAME) -> Session:
        """Claim the machine showing ``pairing_code`` for this controller's owner.

        Raises:
            PairingNotFound: If no machine shows the code.
            AlreadyClaimed: If another owner holds the machine.
        """
        await self._registry.claim(pairing_code, self._owner_id, display_name)
        session = await self._registry.lookup(pairing_code)
        logger.info("Claimed machine %s with code %s", session.machine_id, pairing_code)
        return session

    def connect(self, machine_id: str) -> _Connection:
        """Join the machine's topic; use as ``async with client.connect(id):``."""
        return _Connection(self, machine_id)

    async def open(self, machine_id: str) -> None:
        if self._channel is not None:
            raise RuntimeError("Controller is already connected")
        channel = await self._bus.join(machine_id)
        self._channel = channel
        self._reader = asyncio.create_task(self._read(channel))
        await channel.track(PresenceRecord(role=Role.CONTROLLER, owner_id=self._owner_id))
        logger.info("Controller %s joined machine %s", self._owner_id, machine_id)

    async def close(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        self._correlator.fail_all(BusDisconnected("Controller closed"))

    async def send(self, command: CanonicalCommand) -> None:
        """Publish a command; fire-and-forget."""
        channel = self._require_channel()
        await channel.send_command(command)
        logger.debug("Sent %s", command.type.value)

    async def request_screenshot(self, timeout: float | None = None) -> ScreenshotResponse:
        """Ask the agent for a screenshot and wait for the matching response.

        Raises:
            ScreenshotTimeout: If no response arrives in time.
            ScreenshotSuperseded: If another request replaced this one.
            BusDisconnected: If the bus drops while waiting.
        """
        channel = self._require_channel()
        entry = self._correlator.issue(timeout if timeout is not None else self._screenshot_timeout)
        await channel.send_command(
            CanonicalCommand(type=CommandKind.CAPTURE_SCREENSHOT, request_id=entry.request_id)
        )
        return await self._correlator.wait(entry)

    def _require_channel(self) -> Channel:
        if self._channel is None:
            raise BusDisconnected("Controller is not connected")
        return self._channel

    async def _read(self, channel: Channel) -> None:
        async for event in channel.events():
            if isinstance(event, ScreenshotEvent):
                self._correlator.resolve(event.response)
            elif isinstance(event, PresenceSyncEvent):
                self._snapshot = dict(event.snapshot)
            elif isinstance(event, DisconnectedEvent):
                logger.warning("Controller lost the bus: %s", event.reason)
                self._correlator.fail_all(
                    BusDisconnected(event.reason, machine_id=channel.machine_id)
                )
                self._channel = None


class _Connection:
    def __init__(self, client: ControllerClient, machine_id: str) -> None:
        self._client = client
        self._machine_id = machine_id

    async def __aenter__(self) -> ControllerClient:
        await self._client.open(self._machine_id)
        return self._client

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self._client.close()
