"""Abstract base class for the Input Host.

The Input Host is the native routine that moves the pointer and types
keys. It only ever sees primitive, already-normalized parameters:
logical pixel coordinates, button names, wheel clicks and canonical key
names. Swapping between a local backend and a remote input service
changes nothing else in the agent.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from deskrelay.domain.models import MouseButton

logger = logging.getLogger(__name__)


class InputHost(ABC):
    """Abstract interface for injecting pointer and keyboard input.

    Example usage::

        async with PyAutoGuiInputHost() as host:
            await host.move_mouse(640, 400)
            await host.click(MouseButton.LEFT)
            await host.press_key("a", ["ctrl"])
    """

    @abstractmethod
    async def connect(self) -> None:
        """Acquire the backend (load the library, reach the service).

        Raises:
            InputHostError: If the backend is unavailable.
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the backend. Safe to call more than once."""
        ...

    @abstractmethod
    async def move_mouse(self, x: int, y: int) -> None:
        """Move the pointer to logical pixel ``(x, y)``."""
        ...

    @abstractmethod
    async def click(self, button: MouseButton = MouseButton.LEFT) -> None:
        """Click at the current pointer position."""
        ...

    @abstractmethod
    async def mouse_down(self, button: MouseButton = MouseButton.LEFT) -> None:
        ...

    @abstractmethod
    async def mouse_up(self, button: MouseButton = MouseButton.LEFT) -> None:
        ...

    @abstractmethod
    async def scroll(self, dx: int, dy: int) -> None:
        """Turn the wheel; positive ``dy`` scrolls down, positive ``dx`` right."""
        ...

    @abstractmethod
    async def type_text(self, text: str) -> None:
        """Type text as-is. Does NOT press Enter at the end."""
        ...

    @abstractmethod
    async def press_key(self, key: str, modifiers: Sequence[str] = ()) -> None:
        """Press ``key`` while holding ``modifiers``.

        Modifiers go down in order, then the key is pressed, then the
        modifiers are released in reverse order.
        """
        ...

    @abstractmethod
    async def open_url(self, url: str) -> None:
        """Open ``url`` in the default browser."""
        ...

    async def double_click(self, button: MouseButton = MouseButton.LEFT) -> None:
        await self.click(button)
        await self.click(button)

    async def __aenter__(self) -> InputHost:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.disconnect()


class InputHostError(Exception):
    """Raised when input injection fails."""

    def __init__(self, message: str, backend: str = "") -> None:
        super().__init__(message)
        self.backend = backend
