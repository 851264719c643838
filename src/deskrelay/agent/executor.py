"""Canonical command execution on an Input Host.

The executor expects coordinates that were already converted to logical
pixels by the coordinate normalizer; it never rescales.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import quote_plus

from deskrelay.coords.normalizer import round_half_away
from deskrelay.domain.models import (
    CanonicalCommand,
    CommandKind,
    MouseButton,
    Point,
    ScrollDirection,
    UnrecognizedCommand,
)
from deskrelay.input.base import InputHost

logger = logging.getLogger(__name__)

DEFAULT_HOME_URL = "https://www.google.com"
DEFAULT_SEARCH_URL = "https://www.google.com/search?q={query}"
DEFAULT_SCROLL_CLICKS = 3

# Provider key names -> the names Input Hosts understand.
KEY_ALIASES = {
    "control": "ctrl",
    "ctl": "ctrl",
    "return": "enter",
    "escape": "esc",
    "cmd": "command",
    "meta": "win",
    "super": "win",
    "option": "alt",
    "del": "delete",
    "arrowup": "up",
    "arrowdown": "down",
    "arrowleft": "left",
    "arrowright": "right",
    "page_up": "pageup",
    "page_down": "pagedown",
    "spacebar": "space",
    " ": "space",
}


def normalize_key(key: str) -> str:
    name = key.lower()
    if name in KEY_ALIASES:
        return KEY_ALIASES[name]
    name = name.strip()
    return KEY_ALIASES.get(name, name)


class CommandExecutor:
    """Maps canonical commands onto Input Host primitives.

    Example usage::

        executor = CommandExecutor(host)
        await executor.execute(CanonicalCommand(type="click", x=640, y=400, space="logical"))
    """

    def __init__(
        self,
        host: InputHost,
        home_url: str = DEFAULT_HOME_URL,
        search_url: str = DEFAULT_SEARCH_URL,
    ) -> None:
        self._host = host
        self._home_url = home_url
        self._search_url = search_url

    async def execute(self, command: CanonicalCommand) -> None:
        """Run one command.

        Raises:
            UnrecognizedCommand: If required fields are missing.
            InputHostError: If the Input Host fails.
        """
        kind = command.type
        button = command.button or MouseButton.LEFT
        logger.debug("Executing %s", kind.value)

        if kind == CommandKind.MOVE:
            if not await self._move_if_positioned(command):
                raise UnrecognizedCommand("move requires x and y", command.to_wire())
        elif kind == CommandKind.CLICK:
            await self._move_if_positioned(command)
            await self._host.click(button)
        elif kind == CommandKind.DOUBLE_CLICK:
            await self._move_if_positioned(command)
            await self._host.double_click(button)
        elif kind == CommandKind.MOUSE_DOWN:
            await self._move_if_positioned(command)
            await self._host.mouse_down(button)
        elif kind == CommandKind.MOUSE_UP:
            await self._move_if_positioned(command)
            await self._host.mouse_up(button)
        elif kind == CommandKind.TYPE:
            await self._host.type_text(command.text or "")
        elif kind == CommandKind.KEY_COMBINATION:
            keys = [normalize_key(k) for k in command.keys or ()]
            if not keys:
                raise UnrecognizedCommand("key_combination requires keys", command.to_wire())
            await self._host.press_key(keys[-1], keys[:-1])
        elif kind == CommandKind.SCROLL:
            await self._move_if_positioned(command)
            dx, dy = self._scroll_deltas(command)
            await self._host.scroll(dx, dy)
        elif kind == CommandKind.DRAG:
            if command.source is None or command.destination is None:
                raise UnrecognizedCommand("drag requires source and destination", command.to_wire())
            await self._move(command.source)
            await self._host.mouse_down(button)
            await self._move(command.destination)
            await self._host.mouse_up(button)
        elif kind == CommandKind.NAVIGATE:
            if not command.url:
                raise UnrecognizedCommand("navigate requires url", command.to_wire())
            # Focus the address bar of the active browser window.
            await self._host.press_key("l", ["ctrl"])
            await self._host.type_text(command.url)
            await self._host.press_key("enter")
        elif kind == CommandKind.OPEN_BROWSER:
            await self._host.open_url(command.url or self._home_url)
        elif kind == CommandKind.SEARCH:
            if command.query:
                await self._host.open_url(self._search_url.format(query=quote_plus(command.query)))
            else:
                await self._host.open_url(self._home_url)
        elif kind == CommandKind.WAIT:
            await asyncio.sleep((command.ms or 0) / 1000)
        else:
            raise UnrecognizedCommand(f"{kind.value} is not executable", command.to_wire())

    async def _move_if_positioned(self, command: CanonicalCommand) -> bool:
        if command.x is None or command.y is None:
            return False
        await self._move(Point(x=command.x, y=command.y))
        return True

    async def _move(self, point: Point) -> None:
        await self._host.move_mouse(round_half_away(point.x), round_half_away(point.y))

    @staticmethod
    def _scroll_deltas(command: CanonicalCommand) -> tuple[int, int]:
        if command.dx is not None or command.dy is not None:
            return command.dx or 0, command.dy or 0
        direction = command.direction or ScrollDirection.DOWN
        return {
            ScrollDirection.UP: (0, -DEFAULT_SCROLL_CLICKS),
            ScrollDirection.DOWN: (0, DEFAULT_SCROLL_CLICKS),
            ScrollDirection.LEFT: (-DEFAULT_SCROLL_CLICKS, 0),
            ScrollDirection.RIGHT: (DEFAULT_SCROLL_CLICKS, 0),
        }[direction]
