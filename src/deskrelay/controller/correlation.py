"""Screenshot request/response correlation.

Screenshot requests and responses travel as independent bus messages.
The correlator keeps the outstanding requests in an explicit table keyed
by request id, each with a deadline. A response only counts if its
entry is still in the table; anything arriving after a timeout, or for
an id that was never issued, is discarded.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

from deskrelay.domain.models import ScreenshotResponse

logger = logging.getLogger(__name__)


@dataclass
class PendingScreenshot:
    request_id: str
    issued_at: float
    deadline: float
    future: asyncio.Future[ScreenshotResponse] = field(repr=False)


class ScreenshotCorrelator:
    """Table of outstanding screenshot requests.

    With the default capacity of 1, issuing a request while another is
    still pending evicts the older one, which fails with
    ScreenshotSuperseded.
    """

    def __init__(self, capacity: int = 1, clock: Callable[[], float] = time.monotonic) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._clock = clock
        self._pending: dict[str, PendingScreenshot] = {}

    @property
    def pending(self) -> list[str]:
        return list(self._pending)

    def issue(self, timeout: float) -> PendingScreenshot:
        """Open a new transaction with a ``timeout`` second deadline."""
        self._sweep()
        while len(self._pending) >= self._capacity:
            oldest = next(iter(self._pending))
            entry = self._pending.pop(oldest)
            logger.warning("Screenshot request %s superseded", oldest)
            self._fail(entry, ScreenshotSuperseded(oldest))

        now = self._clock()
        entry = PendingScreenshot(
            request_id=uuid.uuid4().hex,
            issued_at=now,
            deadline=now + timeout,
            future=asyncio.get_running_loop().create_future(),
        )
        self._pending[entry.request_id] = entry
        return entry

    def resolve(self, response: ScreenshotResponse) -> bool:
        """Match a response to its request.

        A response without a request id resolves the single outstanding
        request, if there is exactly one.

        Returns:
            True if the response completed a pending request.
        """
        self._sweep()
        request_id = response.request_id
        if request_id is None:
            if len(self._pending) != 1:
                logger.info("Discarding uncorrelated screenshot response")
                return False
            request_id = next(iter(self._pending))

        entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.info("Discarding late or unknown screenshot response %s", request_id)
            return False
        if not entry.future.done():
            entry.future.set_result(response)
        return True

    async def wait(self, entry: PendingScreenshot) -> ScreenshotResponse:
        """Wait for the response until the entry's deadline.

        Raises:
            ScreenshotTimeout: If the deadline passes first; the entry is
                cleared so a late response is discarded.
            ScreenshotSuperseded: If a newer request evicted this one.
        """
        remaining = max(0.0, entry.deadline - self._clock())
        try:
            return await asyncio.wait_for(entry.future, timeout=remaining)
        except asyncio.TimeoutError:
            self._pending.pop(entry.request_id, None)
            timeout = entry.deadline - entry.issued_at
            logger.warning("Screenshot request %s timed out after %.1fs", entry.request_id, timeout)
            raise ScreenshotTimeout(entry.request_id, timeout) from None

    def fail_all(self, error: Exception) -> None:
        """Fail every outstanding request, e.g. when the bus drops."""
        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            self._fail(entry, error)

    def _sweep(self) -> None:
        now = self._clock()
        for request_id, entry in list(self._pending.items()):
            if entry.deadline <= now:
                del self._pending[request_id]
                self._fail(entry, ScreenshotTimeout(request_id, entry.deadline - entry.issued_at))

    @staticmethod
    def _fail(entry: PendingScreenshot, error: Exception) -> None:
        if not entry.future.done():
            entry.future.set_exception(error)
            # Mark retrieved; nobody may be awaiting an evicted entry.
            entry.future.exception()


class ScreenshotTimeout(Exception):
    """Raised when no screenshot response arrived before the deadline."""

    def __init__(self, request_id: str, timeout: float) -> None:
        super().__init__(f"No screenshot response for {request_id} within {timeout:.1f}s")
        self.request_id = request_id
        self.timeout = timeout


class ScreenshotSuperseded(Exception):
    """Raised when a newer request evicted a pending one."""

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Screenshot request {request_id} was superseded")
        self.request_id = request_id
