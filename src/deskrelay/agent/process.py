"""The agent process running on the controlled machine.

Registers the machine, announces presence on its topic and executes the
commands that arrive there. Bus events and registry change
notifications are merged into one inbox and handled by a single
sequential dispatch loop, so status changes and command execution never
interleave.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Union

from deskrelay.agent.executor import CommandExecutor
from deskrelay.agent.state import LocalStateStore
from deskrelay.bus.base import (
    BusDisconnected,
    Channel,
    CommandBus,
    CommandEvent,
    DisconnectedEvent,
    PresenceSyncEvent,
    ScreenshotEvent,
)
from deskrelay.capture.base import CaptureError, ScreenCapture
from deskrelay.coords.normalizer import CoordinateNormalizer
from deskrelay.domain.models import (
    CommandKind,
    ConnectivityStatus,
    LocalState,
    PresenceRecord,
    Role,
    ScreenshotResponse,
    Session,
    UnrecognizedCommand,
    utcnow,
)
from deskrelay.input.base import InputHostError
from deskrelay.presence.tracker import PresenceTracker
from deskrelay.registry.base import RegistryError, SessionRegistry

logger = logging.getLogger(__name__)

InboxItem = Union[CommandEvent, ScreenshotEvent, PresenceSyncEvent, DisconnectedEvent, Session]

_STOP = object()


class AgentProcess:
    """Pairs the machine and serves commands from its controller.

    Example usage::

        agent = AgentProcess(registry, bus, capture, executor, LocalStateStore())
        code = await agent.start()
        print("Pairing code:", code)
        while True:
            await agent.serve()   # returns when the bus drops
            await asyncio.sleep(5)
    """

    def __init__(
        self,
        registry: SessionRegistry,
        bus: CommandBus,
        capture: ScreenCapture,
        executor: CommandExecutor,
        state_store: LocalStateStore,
        normalizer: CoordinateNormalizer | None = None,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._capture = capture
        self._executor = executor
        self._store = state_store
        self._normalizer = normalizer or CoordinateNormalizer()
        self._tracker = PresenceTracker()
        self._state: LocalState | None = None
        self._pairing_code: str | None = None
        self._inbox: asyncio.Queue[Any] | None = None

    @property
    def pairing_code(self) -> str | None:
        return self._pairing_code

    @property
    def status(self) -> ConnectivityStatus:
        return self._tracker.status

    @property
    def tracker(self) -> PresenceTracker:
        return self._tracker

    @property
    def state(self) -> LocalState | None:
        return self._state

    async def start(self) -> str:
        """Load local identity and register with a fresh pairing code."""
        self._state = self._store.load()
        self._tracker.set_owner(self._state.owner_id)
        self._pairing_code = await self._registry.register(
            self._state.machine_id, cached_owner_id=self._state.owner_id
        )
        if self._state.owner_id:
            logger.info("Machine %s is linked to %s", self._state.machine_id, self._state.owner_id)
        else:
            logger.info("Pairing code for machine %s: %s", self._state.machine_id, self._pairing_code)
        return self._pairing_code

    async def serve(self) -> ConnectivityStatus:
        """Join the topic and dispatch until the bus drops or stop() is called.

        Returns:
            The connectivity status on exit (always ``disconnected``).
        """
        if self._state is None:
            await self.start()
        machine_id = self._state.machine_id

        try:
            channel = await self._bus.join(machine_id)
        except BusDisconnected as e:
            logger.warning("Could not join topic for %s: %s", machine_id, e)
            return self._tracker.disconnected()

        inbox: asyncio.Queue[Any] = asyncio.Queue()
        self._inbox = inbox
        joined_at = utcnow()
        pumps = [
            asyncio.create_task(self._pump_bus(channel, inbox)),
            asyncio.create_task(self._pump_registry(machine_id, inbox)),
        ]
        try:
            await channel.track(self._presence_record(joined_at))
            self._tracker.joined()
            await self._reconcile_session(machine_id, inbox)
            while True:
                item = await inbox.get()
                if item is _STOP:
                    logger.info("Agent stop requested")
                    break
                if isinstance(item, DisconnectedEvent):
                    logger.warning("Bus disconnected: %s", item.reason)
                    break
                await self._dispatch(channel, item, joined_at)
        except BusDisconnected as e:
            logger.warning("Bus disconnected: %s", e)
        finally:
            self._inbox = None
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            try:
                await channel.close()
            except BusDisconnected:
                pass
        return self._tracker.disconnected()

    def stop(self) -> None:
        """Ask a running serve() to leave the topic and return."""
        if self._inbox is not None:
            self._inbox.put_nowait(_STOP)

    async def _dispatch(self, channel: Channel, item: InboxItem, joined_at: datetime) -> None:
        if isinstance(item, PresenceSyncEvent):
            self._tracker.sync(item.snapshot)
        elif isinstance(item, Session):
            await self._on_session(channel, item, joined_at)
        elif isinstance(item, CommandEvent):
            await self._on_command(channel, item)
        elif isinstance(item, ScreenshotEvent):
            logger.debug("Ignoring screenshot response from %s", item.sender)

    async def _on_session(self, channel: Channel, session: Session, joined_at: datetime) -> None:
        if not session.owner_id or session.owner_id == self._state.owner_id:
            return
        self._state = self._state.model_copy(update={"owner_id": session.owner_id})
        self._store.save(self._state)
        logger.info("Machine %s claimed by %s", session.machine_id, session.owner_id)
        await channel.track(self._presence_record(joined_at))
        self._tracker.set_owner(session.owner_id)

    async def _on_command(self, channel: Channel, event: CommandEvent) -> None:
        command = event.command
        if not self._tracker.accepts(event.sender):
            logger.warning(
                "Ignoring %s from %s; active controller is %s",
                command.type.value, event.sender, self._tracker.active_controller,
            )
            return

        if command.type == CommandKind.CAPTURE_SCREENSHOT:
            await self._send_screenshot(channel, command.request_id)
            return

        try:
            await self._executor.execute(self._normalizer.to_input_host(command))
        except (InputHostError, UnrecognizedCommand) as e:
            logger.error("Failed to execute %s: %s", command.type.value, e)

    async def _send_screenshot(self, channel: Channel, request_id: str | None) -> None:
        try:
            image, metadata = await self._capture.capture()
        except CaptureError as e:
            logger.error("Screenshot capture failed: %s", e)
            return
        self._normalizer.update(metadata)
        await channel.send_screenshot(
            ScreenshotResponse(image=image, metadata=metadata, request_id=request_id)
        )
        logger.debug("Sent screenshot %s", request_id)

    def _presence_record(self, joined_at: datetime) -> PresenceRecord:
        return PresenceRecord(role=Role.AGENT, owner_id=self._state.owner_id, joined_at=joined_at)

    async def _pump_bus(self, channel: Channel, inbox: asyncio.Queue[Any]) -> None:
        async for event in channel.events():
            await inbox.put(event)
            if isinstance(event, DisconnectedEvent):
                return
        await inbox.put(DisconnectedEvent(reason="event stream ended"))

    async def _reconcile_session(self, machine_id: str, inbox: asyncio.Queue[Any]) -> None:
        """Queue the stored session so a claim made while we were away is applied."""
        try:
            session = await self._registry.get(machine_id)
        except RegistryError as e:
            logger.warning("Could not read session %s: %s", machine_id, e)
            return
        if session is not None:
            await inbox.put(session)

    async def _pump_registry(self, machine_id: str, inbox: asyncio.Queue[Any]) -> None:
        watcher: AsyncIterator[Session] = self._registry.watch(machine_id)
        try:
            async for session in watcher:
                await inbox.put(session)
        except RegistryError as e:
            logger.warning("Stopped watching session %s: %s", machine_id, e)
