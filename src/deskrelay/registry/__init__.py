"""Session Registry module for deskrelay.

Creates and looks up pairing sessions by machine id and pairing code,
and enforces single-claim ownership.

Public API:
    SessionRegistry -- Abstract base class
    InMemorySessionRegistry -- Authoritative in-process store
    HttpSessionRegistry -- Client of the relay server's session routes
"""

from deskrelay.registry.base import (
    AlreadyClaimed,
    PairingNotFound,
    RegistryError,
    SessionRegistry,
    generate_pairing_code,
)
from deskrelay.registry.memory import InMemorySessionRegistry

__all__ = [
    "AlreadyClaimed",
    "HttpSessionRegistry",
    "InMemorySessionRegistry",
    "PairingNotFound",
    "RegistryError",
    "SessionRegistry",
    "generate_pairing_code",
]


def __getattr__(name: str) -> type:
    """Lazy import for concrete implementations that require external deps."""
    if name == "HttpSessionRegistry":
        from deskrelay.registry.http_client import HttpSessionRegistry
        return HttpSessionRegistry
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
