"""Abstract base class for the session registry.

The registry is the key-value store of pairing sessions, keyed by
machine id and searchable by pairing code. Implementations must make
``claim`` a single compare-and-set: when two principals race for the
same code, exactly one of them wins and the other gets AlreadyClaimed.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable

from deskrelay.domain.models import Session, SessionStatus

logger = logging.getLogger(__name__)

PAIRING_CODE_MIN = 100000
PAIRING_CODE_MAX = 999999

DEFAULT_DISPLAY_NAME = "Desktop App"


def generate_pairing_code(rng: random.Random | None = None) -> str:
    """Return a uniform 6-digit decimal code.

    Sized for human entry over a short claim window, so a regular PRNG
    is used rather than a cryptographic one.
    """
    source = rng if rng is not None else random
    return str(source.randint(PAIRING_CODE_MIN, PAIRING_CODE_MAX))


class SessionRegistry(ABC):
    """Abstract interface for creating, finding and claiming sessions.

    Example usage::

        registry = InMemorySessionRegistry()
        code = await registry.register("machine-1")
        owner = await registry.claim(code, owner_id="user-42")
    """

    def __init__(self, code_factory: Callable[[], str] | None = None) -> None:
        self._code_factory = code_factory or generate_pairing_code

    async def register(self, machine_id: str, cached_owner_id: str | None = None) -> str:
        """Upsert the session for a machine with a fresh pairing code.

        When the agent already knows its owner the session is stored as
        active with that owner; otherwise it waits to be claimed.
        Re-registering replaces the previous code.

        Returns:
            The newly generated pairing code.
        """
        code = self._code_factory()
        session = Session(
            machine_id=machine_id,
            pairing_code=code,
            owner_id=cached_owner_id,
            status=SessionStatus.ACTIVE if cached_owner_id else SessionStatus.WAITING,
        )
        await self.upsert(session)
        logger.info(
            "Registered machine %s (status=%s)", machine_id, session.status.value
        )
        return code

    @abstractmethod
    async def upsert(self, session: Session) -> Session:
        """Insert or replace the session keyed by its machine id."""
        ...

    @abstractmethod
    async def get(self, machine_id: str) -> Session | None:
        """Return the current session for a machine, if any."""
        ...

    @abstractmethod
    async def lookup(self, pairing_code: str) -> Session:
        """Find the session carrying a pairing code.

        Raises:
            PairingNotFound: If no session carries the code.
        """
        ...

    @abstractmethod
    async def claim(
        self,
        pairing_code: str,
        owner_id: str,
        display_name: str = DEFAULT_DISPLAY_NAME,
    ) -> str:
        """Assign the session carrying ``pairing_code`` to ``owner_id``.

        Claiming again as the current owner succeeds without change.

        Returns:
            The owner id now holding the session.

        Raises:
            PairingNotFound: If no session carries the code.
            AlreadyClaimed: If another principal already owns the session.
        """
        ...

    @abstractmethod
    def watch(self, machine_id: str) -> AsyncIterator[Session]:
        """Yield the session each time it changes in the registry."""
        ...


class RegistryError(Exception):
    """Raised when a registry operation fails."""

    def __init__(self, message: str, pairing_code: str = "") -> None:
        super().__init__(message)
        self.pairing_code = pairing_code


class PairingNotFound(RegistryError):
    """No session carries the given pairing code."""


class AlreadyClaimed(RegistryError):
    """The session is already owned by a different principal."""

    def __init__(self, message: str, pairing_code: str = "", owner_id: str | None = None) -> None:
        super().__init__(message, pairing_code=pairing_code)
        self.owner_id = owner_id
