"""REST input service that runs on the controlled machine.

Accepts input primitives over HTTP and replays them on a local Input
Host. This is the remote end of :class:`HttpInputHost`, for setups where
the agent process runs somewhere without access to the desktop session.

    GET  /health          -> {"status": "ok", "connected": true}
    POST /mouse/move      <- {"x": 640, "y": 400}
    POST /mouse/click     <- {"button": "left"}
    POST /mouse/down      <- {"button": "left"}
    POST /mouse/up        <- {"button": "left"}
    POST /mouse/scroll    <- {"dx": 0, "dy": 3}
    POST /keyboard/type   <- {"text": "hello"}
    POST /keyboard/key    <- {"key": "a", "modifiers": ["ctrl"]}
    POST /open            <- {"url": "https://example.com"}
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from deskrelay.domain.models import MouseButton
from deskrelay.input.base import InputHost, InputHostError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class MouseMoveRequest(BaseModel):
    x: int = Field(description="Logical X coordinate")
    y: int = Field(description="Logical Y coordinate")


class MouseButtonRequest(BaseModel):
    button: MouseButton = MouseButton.LEFT


class MouseScrollRequest(BaseModel):
    dx: int = Field(default=0, description="Wheel clicks, positive=right")
    dy: int = Field(default=0, description="Wheel clicks, positive=down")


class TextInputRequest(BaseModel):
    text: str = Field(description="Text to type")


class KeyRequest(BaseModel):
    key: str = Field(description="Key name (e.g., 'enter', 'a')")
    modifiers: list[str] = Field(default_factory=list, description="Modifier keys to hold")


class OpenUrlRequest(BaseModel):
    url: str


class HealthResponse(BaseModel):
    status: str = "ok"
    connected: bool = False


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(host: InputHost | None = None) -> FastAPI:
    """Create the input service application.

    Args:
        host: Input Host to drive. Defaults to the local pyautogui backend.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        h = app.state.host
        if h is None:
            from deskrelay.input.pyautogui_host import PyAutoGuiInputHost

            h = PyAutoGuiInputHost()
            app.state.host = h
        try:
            await h.connect()
            app.state.connected = True
            logger.info("Input service started")
        except InputHostError as e:
            logger.warning("Input host not available, endpoints will return errors: %s", e)
        yield
        await h.disconnect()
        app.state.connected = False
        logger.info("Input service stopped")

    app = FastAPI(
        title="deskrelay Input Service",
        description="Pointer and keyboard injection for deskrelay agents",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.host = host
    app.state.connected = False

    async def run(action: Awaitable[None]) -> dict[str, str]:
        try:
            await action
        except InputHostError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        return {"status": "ok"}

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", connected=app.state.connected)

    @app.post("/mouse/move")
    async def mouse_move(request: MouseMoveRequest) -> dict[str, str]:
        return await run(app.state.host.move_mouse(request.x, request.y))

    @app.post("/mouse/click")
    async def mouse_click(request: MouseButtonRequest) -> dict[str, str]:
        return await run(app.state.host.click(request.button))

    @app.post("/mouse/down")
    async def mouse_down(request: MouseButtonRequest) -> dict[str, str]:
        return await run(app.state.host.mouse_down(request.button))

    @app.post("/mouse/up")
    async def mouse_up(request: MouseButtonRequest) -> dict[str, str]:
        return await run(app.state.host.mouse_up(request.button))

    @app.post("/mouse/scroll")
    async def mouse_scroll(request: MouseScrollRequest) -> dict[str, str]:
        return await run(app.state.host.scroll(request.dx, request.dy))

    @app.post("/keyboard/type")
    async def keyboard_type(request: TextInputRequest) -> dict[str, str]:
        return await run(app.state.host.type_text(request.text))

    @app.post("/keyboard/key")
    async def keyboard_key(request: KeyRequest) -> dict[str, str]:
        return await run(app.state.host.press_key(request.key, request.modifiers))

    @app.post("/open")
    async def open_url(request: OpenUrlRequest) -> dict[str, str]:
        return await run(app.state.host.open_url(request.url))

    return app


def main() -> None:
    """Entry point for running the input service standalone."""
    app = create_app()
    uvicorn.run(app, host="127.0.0.1", port=8766)


if __name__ == "__main__":
    main()
