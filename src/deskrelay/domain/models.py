"""Core domain models for the deskrelay system.

These models represent the data flowing between the agent, the
controller and the relay: sessions and their pairing codes, presence
records, canonical commands, screenshot metadata, and the provider turns
exchanged by the control loop.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionStatus(str, enum.Enum):
    """Stored status of a session in the registry."""

    WAITING = "waiting"
    ACTIVE = "active"


class Role(str, enum.Enum):
    """Role a bus member announces through presence."""

    AGENT = "agent"
    CONTROLLER = "controller"


class ConnectivityStatus(str, enum.Enum):
    """Connectivity status derived from presence membership and ownership."""

    WAITING_TO_BE_CLAIMED = "waiting_to_be_claimed"
    LINKED_WAITING = "linked_waiting"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class CoordinateSpace(str, enum.Enum):
    """Coordinate space a command's x/y values are expressed in."""

    MODEL = "model"  # 0-1000 normalized square, origin top-left
    PHYSICAL = "physical"  # raw framebuffer pixels of the screenshot
    LOGICAL = "logical"  # OS pointer coordinates


class MouseButton(str, enum.Enum):
    LEFT = "left"
    RIGHT = "right"
    MIDDLE = "middle"


class ScrollDirection(str, enum.Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


class CommandKind(str, enum.Enum):
    """The canonical command vocabulary placed on the bus."""

    MOVE = "move"
    CLICK = "click"
    DOUBLE_CLICK = "double_click"
    MOUSE_DOWN = "mouse_down"
    MOUSE_UP = "mouse_up"
    TYPE = "type"
    KEY_COMBINATION = "key_combination"
    SCROLL = "scroll"
    DRAG = "drag"
    NAVIGATE = "navigate"
    OPEN_BROWSER = "open_browser"
    SEARCH = "search"
    WAIT = "wait"
    CAPTURE_SCREENSHOT = "capture_screenshot"


# Older controllers send these names for a pointer move.
LEGACY_COMMAND_ALIASES = {
    "mousemove": CommandKind.MOVE,
    "params": CommandKind.MOVE,
    "mouse_move": CommandKind.MOVE,
}


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


class Point(BaseModel):
    """A point in whichever coordinate space the owning command declares."""

    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class Size(BaseModel):
    model_config = ConfigDict(frozen=True)

    w: int = Field(gt=0)
    h: int = Field(gt=0)


# Assumed screen size when a screenshot cannot be measured.
DEFAULT_IMAGE_SIZE = Size(w=1920, h=1080)


class ScreenshotMetadata(BaseModel):
    """Geometry reported by the agent alongside each captured screenshot.

    ``original`` is the physical framebuffer size, ``logical`` the size in
    OS pointer units, ``scaled`` the size of the encoded image sent to the
    provider, and ``offset`` the logical origin of the captured display
    within a multi-display layout.
    """

    model_config = ConfigDict(frozen=True)

    original: Size
    logical: Size
    scaled: Size
    scale_factor: float = Field(default=1.0, gt=0)
    offset: Point = Field(default_factory=lambda: Point(x=0, y=0))


# ---------------------------------------------------------------------------
# Sessions and presence
# ---------------------------------------------------------------------------


class Session(BaseModel):
    """A machine's pairing session as held by the session registry."""

    model_config = ConfigDict(frozen=True)

    machine_id: str = Field(min_length=1)
    pairing_code: str = Field(pattern=r"^\d{6}$")
    owner_id: str | None = None
    display_name: str | None = None
    status: SessionStatus = SessionStatus.WAITING
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_claimed(self) -> bool:
        return self.owner_id is not None


class PresenceRecord(BaseModel):
    """Ephemeral membership entry for one bus connection."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    role: Role
    owner_id: str | None = Field(default=None, alias="ownerId")
    joined_at: datetime = Field(default_factory=utcnow, alias="joinedAt")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Full membership of a topic: connection key -> records tracked by it.
PresenceSnapshot = dict[str, list[PresenceRecord]]


class LocalState(BaseModel):
    """Identity the agent keeps on its own disk between runs."""

    machine_id: str = Field(min_length=1)
    owner_id: str | None = None


# ---------------------------------------------------------------------------
# Canonical commands
# ---------------------------------------------------------------------------


class UnrecognizedCommand(ValueError):
    """Raised when a bus payload is not a valid canonical command."""

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


class CanonicalCommand(BaseModel):
    """A vendor-independent action placed on the bus.

    Coordinate-bearing commands declare their space in ``space``; when
    it is omitted the coordinates are taken to be model space.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: CommandKind
    x: float | None = None
    y: float | None = None
    space: CoordinateSpace | None = None
    text: str | None = None
    keys: tuple[str, ...] | None = None
    button: MouseButton | None = None
    direction: ScrollDirection | None = None
    dx: int | None = None
    dy: int | None = None
    url: str | None = None
    query: str | None = None
    ms: int | None = Field(default=None, ge=0)
    source: Point | None = None
    destination: Point | None = None
    request_id: str | None = Field(default=None, alias="requestId")

    @field_validator("keys", mode="before")
    @classmethod
    def _split_key_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split("+") if part.strip())
        return value

    @property
    def has_coordinates(self) -> bool:
        return (
            (self.x is not None and self.y is not None)
            or self.source is not None
            or self.destination is not None
        )

    @property
    def coordinate_space(self) -> CoordinateSpace | None:
        """Declared space, or model space when coordinates are present."""
        if self.space is not None:
            return self.space
        return CoordinateSpace.MODEL if self.has_coordinates else None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> CanonicalCommand:
        """Parse a bus payload, accepting the legacy move aliases."""
        if not isinstance(payload, dict):
            raise UnrecognizedCommand("Command payload must be an object", payload)
        data = dict(payload)
        type_name = data.get("type")
        if not isinstance(type_name, str):
            raise UnrecognizedCommand("Command payload has no type", payload)
        if type_name in LEGACY_COMMAND_ALIASES:
            data["type"] = LEGACY_COMMAND_ALIASES[type_name]
        elif type_name not in CommandKind._value2member_map_:
            raise UnrecognizedCommand(f"Unknown command type: {type_name!r}", payload)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise UnrecognizedCommand(
                f"Malformed {type_name!r} command: {e.error_count()} invalid field(s)",
                payload,
            ) from e


class ScreenshotResponse(BaseModel):
    """Agent's reply to a ``capture_screenshot`` command."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["screenshot_response"] = "screenshot_response"
    image: str = Field(description="Base64-encoded image bytes")
    metadata: ScreenshotMetadata | None = None
    request_id: str | None = Field(default=None, alias="requestId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Provider exchange
# ---------------------------------------------------------------------------


# A provider turn is kept in the provider's own serialized form.
Turn = dict[str, Any]


class FunctionCall(BaseModel):
    """A provider-native tool call, before translation."""

    model_config = ConfigDict(frozen=True)

    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ProviderRequest(BaseModel):
    prompt: str
    history: list[Turn] = Field(default_factory=list)
    screenshot: str | None = Field(default=None, description="Base64 image")


class ProviderResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    function_calls: list[FunctionCall] = Field(default_factory=list, alias="functionCalls")
    history: list[Turn] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Control loop
# ---------------------------------------------------------------------------


class LoopOutcome(str, enum.Enum):
    """How a control-loop run ended."""

    COMPLETED = "completed"
    MAX_ITERATIONS = "max_iterations"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LoopState(BaseModel):
    """Working state of one control-loop run; discarded when it ends."""

    history: list[Turn] = Field(default_factory=list)
    iteration: int = Field(default=0, ge=0)
    max_iterations: int = Field(default=20, gt=0)
    done: bool = False

    @property
    def is_over_limit(self) -> bool:
        return self.iteration >= self.max_iterations


class LoopResult(BaseModel):
    outcome: LoopOutcome
    iterations: int = Field(ge=0)
    text: str = ""
    error: str | None = None
    commands_sent: int = Field(default=0, ge=0)
