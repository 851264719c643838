"""In-process session registry.

This is the authoritative store behind the relay server. All mutations
happen under one asyncio lock, which makes ``claim`` an atomic
compare-and-set for every caller sharing the instance.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable

from deskrelay.domain.models import Session, SessionStatus, utcnow
from deskrelay.registry.base import (
    DEFAULT_DISPLAY_NAME,
    AlreadyClaimed,
    PairingNotFound,
    SessionRegistry,
)

logger = logging.getLogger(__name__)


class InMemorySessionRegistry(SessionRegistry):
    """Keeps sessions in dictionaries and notifies watchers through queues."""

    def __init__(self, code_factory: Callable[[], str] | None = None) -> None:
        super().__init__(code_factory=code_factory)
        self._sessions: dict[str, Session] = {}
        self._codes: dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._watchers: dict[str, list[asyncio.Queue[Session]]] = {}

    async def upsert(self, session: Session) -> Session:
        async with self._lock:
            previous = self._sessions.get(session.machine_id)
            if previous is not None and self._codes.get(previous.pairing_code) == session.machine_id:
                del self._codes[previous.pairing_code]
            holder = self._codes.get(session.pairing_code)
            if holder is not None and holder != session.machine_id:
                logger.warning(
                    "Pairing code reused; machine %s supersedes %s", session.machine_id, holder
                )
            stored = session.model_copy(update={"updated_at": utcnow()})
            self._sessions[session.machine_id] = stored
            self._codes[session.pairing_code] = session.machine_id
            self._notify(stored)
        return stored

    async def get(self, machine_id: str) -> Session | None:
        return self._sessions.get(machine_id)

    async def lookup(self, pairing_code: str) -> Session:
        machine_id = self._codes.get(pairing_code)
        session = self._sessions.get(machine_id) if machine_id else None
        if session is None or session.pairing_code != pairing_code:
            raise PairingNotFound(f"No session with pairing code {pairing_code}", pairing_code)
        return session

    async def claim(
        self,
        pairing_code: str,
        owner_id: str,
        display_name: str = DEFAULT_DISPLAY_NAME,
    ) -> str:
        async with self._lock:
            session = await self.lookup(pairing_code)
            if session.owner_id is not None:
                if session.owner_id != owner_id:
                    raise AlreadyClaimed(
                        f"Session for code {pairing_code} is already claimed",
                        pairing_code=pairing_code,
                        owner_id=session.owner_id,
                    )
                return session.owner_id
            claimed = session.model_copy(
                update={
                    "owner_id": owner_id,
                    "display_name": display_name,
                    "status": SessionStatus.ACTIVE,
                    "updated_at": utcnow(),
                }
            )
            self._sessions[claimed.machine_id] = claimed
            self._notify(claimed)
        logger.info("Machine %s claimed by %s", claimed.machine_id, owner_id)
        return owner_id

    async def watch(self, machine_id: str) -> AsyncIterator[Session]:
        queue: asyncio.Queue[Session] = asyncio.Queue()
        self._watchers.setdefault(machine_id, []).append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._watchers[machine_id].remove(queue)

    def _notify(self, session: Session) -> None:
        for queue in self._watchers.get(session.machine_id, []):
            queue.put_nowait(session)
