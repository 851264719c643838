"""Tests for the WebSocket bus against a live relay server."""

from __future__ import annotations

import asyncio
import socket

import pytest
import pytest_asyncio
import uvicorn
import websockets

from deskrelay.bus.base import (
    BusDisconnected,
    CommandEvent,
    DisconnectedEvent,
    PresenceSyncEvent,
    ScreenshotEvent,
)
from deskrelay.bus.websocket import WebSocketBus
from deskrelay.domain.models import (
    CanonicalCommand,
    CommandKind,
    MouseButton,
    PresenceRecord,
    Role,
    ScreenshotResponse,
)
from deskrelay.registry.memory import InMemorySessionRegistry
from deskrelay.relay.server import create_app


async def next_event(stream, kind: type, timeout: float = 2.0):
    """Return the next event of ``kind`` from an open event stream."""

    async def scan():
        while True:
            event = await stream.__anext__()
            if isinstance(event, kind):
                return event

    return await asyncio.wait_for(scan(), timeout=timeout)


@pytest_asyncio.fixture
async def relay_url():
    """Serve the relay app on a free local port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    config = uvicorn.Config(
        create_app(registry=InMemorySessionRegistry()), log_level="warning", lifespan="on"
    )
    server = uvicorn.Server(config)
    task = asyncio.create_task(server.serve(sockets=[sock]))
    while not server.started:
        await asyncio.sleep(0.01)
    yield f"ws://127.0.0.1:{port}"
    server.should_exit = True
    await asyncio.wait_for(task, timeout=5.0)
    sock.close()


class TestWebSocketBus:
    @pytest.mark.asyncio
    async def test_round_trip_through_relay(self, relay_url: str) -> None:
        bus = WebSocketBus(relay_url, open_timeout=2.0)
        agent = await bus.join("m1")
        controller = await bus.join("m1")
        agent_events = agent.events().__aiter__()
        controller_events = controller.events().__aiter__()
        try:
            await agent.track(PresenceRecord(role=Role.AGENT))
            await next_event(agent_events, PresenceSyncEvent)

            await controller.track(PresenceRecord(role=Role.CONTROLLER, owner_id="user-1"))
            sync = await next_event(agent_events, PresenceSyncEvent)
            roles = sorted(r.role.value for records in sync.snapshot.values() for r in records)
            assert roles == ["agent", "controller"]
            await next_event(controller_events, PresenceSyncEvent)

            await controller.send_command(CanonicalCommand(type=CommandKind.CLICK, button=MouseButton.LEFT))
            event = await next_event(agent_events, CommandEvent)
            assert event.command.type == CommandKind.CLICK
            assert event.sender in sync.snapshot

            await agent.send_screenshot(ScreenshotResponse(image="aGk=", request_id="r1"))
            shot = await next_event(controller_events, ScreenshotEvent)
            assert shot.response.request_id == "r1"
            assert shot.response.image == "aGk="
        finally:
            await controller.close()
            await agent.close()

    @pytest.mark.asyncio
    async def test_leaving_member_resyncs(self, relay_url: str) -> None:
        bus = WebSocketBus(relay_url, open_timeout=2.0)
        agent = await bus.join("m1")
        controller = await bus.join("m1")
        agent_events = agent.events().__aiter__()
        try:
            await agent.track(PresenceRecord(role=Role.AGENT))
            await controller.track(PresenceRecord(role=Role.CONTROLLER))
            await next_event(agent_events, PresenceSyncEvent)
            await next_event(agent_events, PresenceSyncEvent)

            await controller.close()
            sync = await next_event(agent_events, PresenceSyncEvent)
            assert [r.role for records in sync.snapshot.values() for r in records] == [Role.AGENT]
        finally:
            await agent.close()

    @pytest.mark.asyncio
    async def test_unreachable_relay(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.close()
        with pytest.raises(BusDisconnected):
            await WebSocketBus(f"ws://127.0.0.1:{port}", open_timeout=1.0).join("m1")

    @pytest.mark.asyncio
    async def test_dropped_socket_yields_disconnected(self) -> None:
        async def handler(connection) -> None:
            await connection.send('{"event": "presence_sync", "payload": {}}')
            # Let the frame reach the client before the connection is reset.
            await asyncio.sleep(0.2)
            connection.transport.abort()

        async with websockets.serve(handler, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            channel = await WebSocketBus(f"ws://127.0.0.1:{port}", open_timeout=2.0).join("m1")
            stream = channel.events().__aiter__()
            assert isinstance(await next_event(stream, PresenceSyncEvent), PresenceSyncEvent)
            event = await next_event(stream, DisconnectedEvent)
            assert event.reason
            with pytest.raises(StopAsyncIteration):
                await stream.__anext__()
            with pytest.raises(BusDisconnected):
                await channel.send_command(CanonicalCommand(type=CommandKind.WAIT, ms=1))

    @pytest.mark.asyncio
    async def test_explicit_close_ends_silently(self, relay_url: str) -> None:
        channel = await WebSocketBus(relay_url, open_timeout=2.0).join("m1")
        await channel.close()
        events = [event async for event in channel.events()]
        assert events == []
