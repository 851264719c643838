"""Local Input Host backend using pyautogui.

pyautogui calls block, so each primitive runs in the default thread
pool executor.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import webbrowser
from collections.abc import Sequence
from typing import Any, Callable

from deskrelay.domain.models import MouseButton
from deskrelay.input.base import InputHost, InputHostError

logger = logging.getLogger(__name__)


class PyAutoGuiInputHost(InputHost):
    """Drives the local pointer and keyboard.

    Requires the ``local`` extra (pyautogui) and a desktop session.
    """

    def __init__(self, failsafe: bool = True, pause: float = 0.0) -> None:
        self._failsafe = failsafe
        self._pause = pause
        self._gui: Any = None

    async def connect(self) -> None:
        """Import pyautogui lazily; it needs a display at import time."""
        if self._gui is not None:
            return
        try:
            import pyautogui
        except Exception as e:
            raise InputHostError(f"pyautogui unavailable: {e}", backend="pyautogui") from e
        pyautogui.FAILSAFE = self._failsafe
        pyautogui.PAUSE = self._pause
        self._gui = pyautogui
        w, h = pyautogui.size()
        logger.info("Local input host ready (%dx%d)", w, h)

    async def disconnect(self) -> None:
        self._gui = None

    async def move_mouse(self, x: int, y: int) -> None:
        await self._run(self._require().moveTo, x, y)

    async def click(self, button: MouseButton = MouseButton.LEFT) -> None:
        await self._run(self._require().click, button=button.value)

    async def mouse_down(self, button: MouseButton = MouseButton.LEFT) -> None:
        await self._run(self._require().mouseDown, button=button.value)

    async def mouse_up(self, button: MouseButton = MouseButton.LEFT) -> None:
        await self._run(self._require().mouseUp, button=button.value)

    async def scroll(self, dx: int, dy: int) -> None:
        gui = self._require()
        # pyautogui scrolls up for positive amounts.
        if dy:
            await self._run(gui.scroll, -dy)
        if dx:
            await self._run(gui.hscroll, dx)

    async def type_text(self, text: str) -> None:
        await self._run(self._require().write, text)

    async def press_key(self, key: str, modifiers: Sequence[str] = ()) -> None:
        gui = self._require()

        def press() -> None:
            held: list[str] = []
            try:
                for modifier in modifiers:
                    gui.keyDown(modifier)
                    held.append(modifier)
                gui.press(key)
            finally:
                for modifier in reversed(held):
                    gui.keyUp(modifier)

        await self._run(press)

    async def open_url(self, url: str) -> None:
        opened = await self._run(webbrowser.open, url)
        if not opened:
            raise InputHostError(f"No browser could open {url}", backend="pyautogui")

    def _require(self) -> Any:
        if self._gui is None:
            raise InputHostError("Input host is not connected", backend="pyautogui")
        return self._gui

    async def _run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
        except InputHostError:
            raise
        except Exception as e:
            raise InputHostError(f"{getattr(fn, '__name__', fn)} failed: {e}", backend="pyautogui") from e
