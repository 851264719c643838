"""HTTP session registry client.

Talks to the session routes of the relay server. The relay's in-memory
registry does the compare-and-set, so claim races are settled there and
surface here as HTTP 409.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable

import httpx

from deskrelay.domain.models import Session
from deskrelay.registry.base import (
    DEFAULT_DISPLAY_NAME,
    AlreadyClaimed,
    PairingNotFound,
    RegistryError,
    SessionRegistry,
)

logger = logging.getLogger(__name__)


class HttpSessionRegistry(SessionRegistry):
    """Session registry backed by the relay server's REST API.

    Change notification is done by polling ``GET /sessions/{machine_id}``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8765",
        timeout: float = 10.0,
        poll_interval: float = 2.0,
        code_factory: Callable[[], str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(code_factory=code_factory)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpSessionRegistry:
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.aclose()

    async def upsert(self, session: Session) -> Session:
        resp = await self._request(
            "PUT", f"/sessions/{session.machine_id}", json=session.model_dump(mode="json")
        )
        return Session.model_validate(resp.json())

    async def get(self, machine_id: str) -> Session | None:
        resp = await self._request("GET", f"/sessions/{machine_id}", allow={404})
        if resp.status_code == 404:
            return None
        return Session.model_validate(resp.json())

    async def lookup(self, pairing_code: str) -> Session:
        resp = await self._request("GET", f"/sessions/by-code/{pairing_code}", allow={404})
        if resp.status_code == 404:
            raise PairingNotFound(f"No session with pairing code {pairing_code}", pairing_code)
        return Session.model_validate(resp.json())

    async def claim(
        self,
        pairing_code: str,
        owner_id: str,
        display_name: str = DEFAULT_DISPLAY_NAME,
    ) -> str:
        resp = await self._request(
            "POST",
            "/sessions/claim",
            json={
                "pairing_code": pairing_code,
                "owner_id": owner_id,
                "display_name": display_name,
            },
            allow={404, 409},
        )
        if resp.status_code == 404:
            raise PairingNotFound(f"No session with pairing code {pairing_code}", pairing_code)
        if resp.status_code == 409:
            raise AlreadyClaimed(
                f"Session for code {pairing_code} is already claimed",
                pairing_code=pairing_code,
                owner_id=resp.json().get("owner_id"),
            )
        return resp.json()["owner_id"]

    async def watch(self, machine_id: str) -> AsyncIterator[Session]:
        last: Session | None = await self.get(machine_id)
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                current = await self.get(machine_id)
            except RegistryError as e:
                logger.warning("Session poll for %s failed: %s", machine_id, e)
                continue
            if current is not None and current != last:
                last = current
                yield current

    async def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        allow: set[int] | None = None,
    ) -> httpx.Response:
        client = self._ensure_client()
        try:
            resp = await client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise RegistryError(f"Registry request {method} {path} failed: {e}") from e
        if allow and resp.status_code in allow:
            return resp
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RegistryError(f"Registry request {method} {path} failed: {e}") from e
        return resp
