"""Domain models for deskrelay.

This package contains the core data structures, enumerations, and value
objects shared by the agent, the controller, and the relay. All models
use Pydantic v2 for validation and serialization.
"""

from deskrelay.domain.models import (
    DEFAULT_IMAGE_SIZE,
    CanonicalCommand,
    CommandKind,
    ConnectivityStatus,
    CoordinateSpace,
    FunctionCall,
    LocalState,
    LoopOutcome,
    LoopResult,
    LoopState,
    MouseButton,
    Point,
    PresenceRecord,
    PresenceSnapshot,
    ProviderRequest,
    ProviderResponse,
    Role,
    ScreenshotMetadata,
    ScreenshotResponse,
    ScrollDirection,
    Session,
    SessionStatus,
    Size,
    UnrecognizedCommand,
)

__all__ = [
    "DEFAULT_IMAGE_SIZE",
    "CanonicalCommand",
    "CommandKind",
    "ConnectivityStatus",
    "CoordinateSpace",
    "FunctionCall",
    "LocalState",
    "LoopOutcome",
    "LoopResult",
    "LoopState",
    "MouseButton",
    "Point",
    "PresenceRecord",
    "PresenceSnapshot",
    "ProviderRequest",
    "ProviderResponse",
    "Role",
    "ScreenshotMetadata",
    "ScreenshotResponse",
    "ScrollDirection",
    "Session",
    "SessionStatus",
    "Size",
    "UnrecognizedCommand",
]
