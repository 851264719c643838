"""FastAPI relay server.

Hosts the two shared services every agent and controller talks to:
the session store (REST routes over an in-memory registry) and the
command bus (one WebSocket topic per machine id).
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from deskrelay.bus.base import (
    EVENT_COMMAND,
    EVENT_TRACK,
    command_message,
    presence_sync_message,
)
from deskrelay.domain.models import PresenceRecord, PresenceSnapshot, Session
from deskrelay.registry.base import (
    DEFAULT_DISPLAY_NAME,
    AlreadyClaimed,
    PairingNotFound,
    SessionRegistry,
)
from deskrelay.registry.memory import InMemorySessionRegistry

logger = logging.getLogger(__name__)


class ClaimRequest(BaseModel):
    pairing_code: str = Field(pattern=r"^\d{6}$", description="6-digit pairing code")
    owner_id: str = Field(min_length=1, description="Principal claiming the machine")
    display_name: str = DEFAULT_DISPLAY_NAME


class RelayStatus(BaseModel):
    status: str = "ok"
    topics: int = 0


class RelayHub:
    """Membership and fan-out for the WebSocket topics."""

    def __init__(self) -> None:
        self._sockets: dict[str, dict[str, WebSocket]] = {}
        self._presence: dict[str, dict[str, PresenceRecord]] = {}

    @property
    def topic_count(self) -> int:
        return len(self._sockets)

    def join(self, machine_id: str, websocket: WebSocket) -> str:
        key = uuid.uuid4().hex[:12]
        self._sockets.setdefault(machine_id, {})[key] = websocket
        logger.info("Connection %s joined topic %s", key, machine_id)
        return key

    def snapshot(self, machine_id: str) -> PresenceSnapshot:
        return {key: [record] for key, record in self._presence.get(machine_id, {}).items()}

    async def track(self, machine_id: str, key: str, record: PresenceRecord) -> None:
        self._presence.setdefault(machine_id, {})[key] = record
        await self._sync(machine_id)

    async def forward(self, machine_id: str, key: str, payload: dict[str, Any]) -> None:
        message = command_message(payload, sender=key)
        for other, websocket in list(self._sockets.get(machine_id, {}).items()):
            if other != key:
                await self._send(websocket, message)

    async def leave(self, machine_id: str, key: str) -> None:
        self._sockets.get(machine_id, {}).pop(key, None)
        had_presence = self._presence.get(machine_id, {}).pop(key, None) is not None
        if not self._sockets.get(machine_id):
            self._sockets.pop(machine_id, None)
            self._presence.pop(machine_id, None)
        logger.info("Connection %s left topic %s", key, machine_id)
        if had_presence:
            await self._sync(machine_id)

    async def _sync(self, machine_id: str) -> None:
        message = presence_sync_message(self.snapshot(machine_id))
        for websocket in list(self._sockets.get(machine_id, {}).values()):
            await self._send(websocket, message)

    async def _send(self, websocket: WebSocket, message: dict[str, Any]) -> None:
        try:
            await websocket.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError) as e:
            # Peer is going away; its own handler cleans up.
            logger.debug("Send to closing socket failed: %s", e)


def create_app(
    registry: SessionRegistry | None = None,
    hub: RelayHub | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Relay started")
        yield
        logger.info("Relay stopped")

    app = FastAPI(
        title="deskrelay Relay",
        description="Session store and command bus for deskrelay agents and controllers",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.registry = registry if registry is not None else InMemorySessionRegistry()
    app.state.hub = hub if hub is not None else RelayHub()

    @app.get("/health")
    async def health_check() -> RelayStatus:
        return RelayStatus(status="ok", topics=app.state.hub.topic_count)

    @app.put("/sessions/{machine_id}")
    async def upsert_session(machine_id: str, session: Session) -> dict[str, Any]:
        if session.machine_id != machine_id:
            raise HTTPException(status_code=400, detail="machine_id does not match path")
        stored = await app.state.registry.upsert(session)
        return stored.model_dump(mode="json")

    @app.get("/sessions/by-code/{code}")
    async def lookup_session(code: str) -> dict[str, Any]:
        try:
            session = await app.state.registry.lookup(code)
        except PairingNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        return session.model_dump(mode="json")

    @app.get("/sessions/{machine_id}")
    async def get_session(machine_id: str) -> dict[str, Any]:
        session = await app.state.registry.get(machine_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"No session for {machine_id}")
        return session.model_dump(mode="json")

    @app.post("/sessions/claim")
    async def claim_session(request: ClaimRequest) -> Any:
        try:
            owner_id = await app.state.registry.claim(
                request.pairing_code, request.owner_id, request.display_name
            )
        except PairingNotFound as e:
            return JSONResponse(status_code=404, content={"detail": str(e)})
        except AlreadyClaimed as e:
            logger.info("Rejected claim of code %s by %s", request.pairing_code, request.owner_id)
            return JSONResponse(
                status_code=409, content={"detail": str(e), "owner_id": e.owner_id}
            )
        logger.info("Code %s claimed by %s", request.pairing_code, owner_id)
        return {"owner_id": owner_id}

    @app.websocket("/ws/{machine_id}")
    async def topic(websocket: WebSocket, machine_id: str) -> None:
        h: RelayHub = app.state.hub
        await websocket.accept()
        key = h.join(machine_id, websocket)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.debug("Ignoring non-JSON frame from %s", key)
                    continue
                if not isinstance(message, dict):
                    continue
                event = message.get("event")
                payload = message.get("payload")
                if event == EVENT_TRACK:
                    try:
                        record = PresenceRecord.model_validate(payload)
                    except ValidationError as e:
                        logger.warning("Invalid presence record from %s: %s", key, e)
                        continue
                    await h.track(machine_id, key, record)
                elif event == EVENT_COMMAND and isinstance(payload, dict):
                    await h.forward(machine_id, key, payload)
                else:
                    logger.debug("Ignoring event %r from %s", event, key)
        except WebSocketDisconnect:
            pass
        finally:
            await h.leave(machine_id, key)

    return app


def main() -> None:
    """Entry point for running the relay standalone."""
    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8765)


if __name__ == "__main__":
    main()
