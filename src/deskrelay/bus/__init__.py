"""Command Bus module for deskrelay.

Public API:
    CommandBus -- Abstract base class
    Channel -- Joined topic handle with a typed event stream
    InMemoryBus -- Same-process bus
    WebSocketBus -- Client of the relay server
"""

from deskrelay.bus.base import (
    BusDisconnected,
    BusEvent,
    Channel,
    CommandBus,
    CommandEvent,
    DisconnectedEvent,
    PresenceSyncEvent,
    ScreenshotEvent,
    command_message,
    parse_message,
    presence_sync_message,
    track_message,
)
from deskrelay.bus.memory import InMemoryBus

__all__ = [
    "BusDisconnected",
    "BusEvent",
    "Channel",
    "CommandBus",
    "CommandEvent",
    "DisconnectedEvent",
    "InMemoryBus",
    "PresenceSyncEvent",
    "ScreenshotEvent",
    "WebSocketBus",
    "command_message",
    "parse_message",
    "presence_sync_message",
    "track_message",
]


def __getattr__(name: str) -> type:
    """Lazy import for concrete implementations that require external deps."""
    if name == "WebSocketBus":
        from deskrelay.bus.websocket import WebSocketBus
        return WebSocketBus
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
