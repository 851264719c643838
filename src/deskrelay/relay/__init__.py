"""Relay server for deskrelay.

Public API:
    create_app -- FastAPI application factory
    RelayHub -- WebSocket topic membership and fan-out
"""

from deskrelay.relay.server import RelayHub, create_app

__all__ = ["RelayHub", "create_app"]
