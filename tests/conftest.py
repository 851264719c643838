"""Shared test fixtures for the deskrelay test suite.

Provides common fixtures used across unit tests: sample screenshots and
metadata, an in-process registry and bus, a recording input host, and
a fake screen capture.
"""

from __future__ import annotations

from collections.abc import Sequence
from itertools import count
from unittest.mock import AsyncMock

import numpy as np
import pytest

from deskrelay.bus.memory import InMemoryBus
from deskrelay.capture.base import RawScreen, ScreenCapture
from deskrelay.domain.models import MouseButton, Point, ScreenshotMetadata, Size
from deskrelay.input.base import InputHost
from deskrelay.registry.memory import InMemorySessionRegistry
from deskrelay.utils.imaging import numpy_to_base64_jpeg


# ---------------------------------------------------------------------------
# Image / Metadata Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_image() -> np.ndarray:
    """A 200x100 black BGR image for testing."""
    return np.zeros((100, 200, 3), dtype=np.uint8)


@pytest.fixture
def sample_image_b64(sample_image: np.ndarray) -> str:
    return numpy_to_base64_jpeg(sample_image)


@pytest.fixture
def sample_metadata() -> ScreenshotMetadata:
    """A HiDPI display: 2560x1600 physical, 1280x800 logical."""
    return ScreenshotMetadata(
        original=Size(w=2560, h=1600),
        logical=Size(w=1280, h=800),
        scaled=Size(w=1024, h=640),
        scale_factor=2.0,
        offset=Point(x=0, y=0),
    )


# ---------------------------------------------------------------------------
# Registry / Bus Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def code_factory():
    """Deterministic pairing codes: 482913, 482914, ..."""
    codes = count(482913)
    return lambda: str(next(codes))


@pytest.fixture
def registry(code_factory) -> InMemorySessionRegistry:
    return InMemorySessionRegistry(code_factory=code_factory)


@pytest.fixture
def bus() -> InMemoryBus:
    return InMemoryBus()


# ---------------------------------------------------------------------------
# Agent-side Fakes
# ---------------------------------------------------------------------------


class RecordingInputHost(InputHost):
    """Input host that records every primitive call in order."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def move_mouse(self, x: int, y: int) -> None:
        self.calls.append(("move_mouse", x, y))

    async def click(self, button: MouseButton = MouseButton.LEFT) -> None:
        self.calls.append(("click", MouseButton(button).value))

    async def mouse_down(self, button: MouseButton = MouseButton.LEFT) -> None:
        self.calls.append(("mouse_down", MouseButton(button).value))

    async def mouse_up(self, button: MouseButton = MouseButton.LEFT) -> None:
        self.calls.append(("mouse_up", MouseButton(button).value))

    async def scroll(self, dx: int, dy: int) -> None:
        self.calls.append(("scroll", dx, dy))

    async def type_text(self, text: str) -> None:
        self.calls.append(("type_text", text))

    async def press_key(self, key: str, modifiers: Sequence[str] = ()) -> None:
        self.calls.append(("press_key", key, tuple(modifiers)))

    async def open_url(self, url: str) -> None:
        self.calls.append(("open_url", url))


class FakeScreenCapture(ScreenCapture):
    """Capture source returning a fixed 400x200 frame at 2x scale."""

    def __init__(self, scale_factor: float = 2.0, offset: Point | None = None) -> None:
        super().__init__(max_dimension=100)
        self.scale_factor = scale_factor
        self.offset = offset or Point(x=0, y=0)
        self.grabs = 0

    async def grab(self) -> RawScreen:
        self.grabs += 1
        return RawScreen(
            image=np.zeros((200, 400, 4), dtype=np.uint8),
            scale_factor=self.scale_factor,
            offset=self.offset,
        )


@pytest.fixture
def recording_host() -> RecordingInputHost:
    return RecordingInputHost()


@pytest.fixture
def fake_capture() -> FakeScreenCapture:
    return FakeScreenCapture()


# ---------------------------------------------------------------------------
# Mock Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_input_host() -> AsyncMock:
    """A mock InputHost for testing the executor without a real backend."""
    mock = AsyncMock(spec=InputHost)
    return mock


@pytest.fixture
def mock_provider() -> AsyncMock:
    """A mock VisionProvider; configure ``infer`` per test."""
    mock = AsyncMock()
    mock.model = "mock-model"
    return mock
