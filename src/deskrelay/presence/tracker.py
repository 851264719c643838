"""Presence tracking and connectivity status derivation.

Status is always derived from the full membership snapshot plus the
owner the agent knows about. Individual join/leave deltas are never
applied on their own, so a missed event cannot leave the status stale.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from deskrelay.domain.models import ConnectivityStatus, PresenceRecord, PresenceSnapshot, Role

logger = logging.getLogger(__name__)


def derive_status(
    snapshot: Mapping[str, Sequence[PresenceRecord]],
    prior_owner: str | None,
    connected: bool = True,
) -> ConnectivityStatus:
    """Compute connectivity status from a membership snapshot."""
    if not connected:
        return ConnectivityStatus.DISCONNECTED
    if controller_keys(snapshot):
        return ConnectivityStatus.ACTIVE
    if prior_owner:
        return ConnectivityStatus.LINKED_WAITING
    return ConnectivityStatus.WAITING_TO_BE_CLAIMED


def controller_keys(snapshot: Mapping[str, Sequence[PresenceRecord]]) -> list[str]:
    """Connection keys tracking a controller, first-joined first."""
    joined: list[tuple[object, str]] = []
    for key, records in snapshot.items():
        controllers = [r for r in records if r.role == Role.CONTROLLER]
        if controllers:
            joined.append((min(r.joined_at for r in controllers), key))
    return [key for _, key in sorted(joined)]


class PresenceTracker:
    """Holds the latest membership snapshot for one machine's topic.

    When more than one controller is present, the controller that joined
    first is the active one; commands from the others are refused.
    """

    def __init__(self, owner_id: str | None = None) -> None:
        self._snapshot: PresenceSnapshot = {}
        self._owner_id = owner_id
        self._connected = False
        self._status = derive_status(self._snapshot, owner_id, connected=False)
        self._transitions: list[ConnectivityStatus] = [self._status]

    @property
    def status(self) -> ConnectivityStatus:
        return self._status

    @property
    def transitions(self) -> list[ConnectivityStatus]:
        """Every distinct status reached, in order."""
        return list(self._transitions)

    @property
    def snapshot(self) -> PresenceSnapshot:
        return {key: list(records) for key, records in self._snapshot.items()}

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def active_controller(self) -> str | None:
        keys = controller_keys(self._snapshot)
        return keys[0] if keys else None

    def joined(self) -> ConnectivityStatus:
        """Record that the agent (re)joined the topic and recompute."""
        self._connected = True
        return self._recompute()

    def sync(self, snapshot: Mapping[str, Sequence[PresenceRecord]]) -> ConnectivityStatus:
        """Replace the membership snapshot and recompute."""
        self._snapshot = {key: list(records) for key, records in snapshot.items()}
        self._connected = True
        return self._recompute()

    def set_owner(self, owner_id: str | None) -> ConnectivityStatus:
        self._owner_id = owner_id
        return self._recompute()

    def disconnected(self) -> ConnectivityStatus:
        """The bus connection dropped; membership is no longer known."""
        self._snapshot = {}
        self._connected = False
        return self._recompute()

    def accepts(self, sender: str | None) -> bool:
        """Whether a command from ``sender`` should be executed."""
        if sender is None:
            return True
        if sender not in controller_keys(self._snapshot):
            # Not a tracked controller (e.g. membership not yet synced).
            return True
        return sender == self.active_controller

    def _recompute(self) -> ConnectivityStatus:
        status = derive_status(self._snapshot, self._owner_id, connected=self._connected)
        if status != self._status:
            logger.info("Connectivity status: %s -> %s", self._status.value, status.value)
            self._status = status
            self._transitions.append(status)
        return status
