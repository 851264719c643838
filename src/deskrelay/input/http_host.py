"""HTTP Input Host backend.

Sends input primitives as JSON POSTs to an input service (see
:mod:`deskrelay.input.service`) running on the controlled machine.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx

from deskrelay.domain.models import MouseButton
from deskrelay.input.base import InputHost, InputHostError

logger = logging.getLogger(__name__)


class HttpInputHost(InputHost):
    """Forwards input primitives to a remote input service."""

    def __init__(
        self,
        base_url: str = "http://localhost:8766",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the HTTP client and verify service connectivity."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        try:
            resp = await self._client.get("/health")
            resp.raise_for_status()
            logger.info("Connected to input service at %s", self._base_url)
        except httpx.HTTPError as e:
            await self._client.aclose()
            self._client = None
            raise InputHostError(
                f"Failed to connect to input service: {e}", backend="http"
            ) from e

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from input service")

    async def move_mouse(self, x: int, y: int) -> None:
        await self._post("/mouse/move", {"x": x, "y": y})

    async def click(self, button: MouseButton = MouseButton.LEFT) -> None:
        await self._post("/mouse/click", {"button": button.value})

    async def mouse_down(self, button: MouseButton = MouseButton.LEFT) -> None:
        await self._post("/mouse/down", {"button": button.value})

    async def mouse_up(self, button: MouseButton = MouseButton.LEFT) -> None:
        await self._post("/mouse/up", {"button": button.value})

    async def scroll(self, dx: int, dy: int) -> None:
        await self._post("/mouse/scroll", {"dx": dx, "dy": dy})

    async def type_text(self, text: str) -> None:
        await self._post("/keyboard/type", {"text": text})
        logger.debug("Sent text: %s", text[:50])

    async def press_key(self, key: str, modifiers: Sequence[str] = ()) -> None:
        await self._post("/keyboard/key", {"key": key, "modifiers": list(modifiers)})

    async def open_url(self, url: str) -> None:
        await self._post("/open", {"url": url})

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        if self._client is None:
            raise InputHostError("Not connected to input service", backend="http")
        try:
            resp = await self._client.post(path, json=payload)
            resp.raise_for_status()
            return resp
        except httpx.HTTPError as e:
            raise InputHostError(
                f"HTTP request to {path} failed: {e}", backend="http"
            ) from e
