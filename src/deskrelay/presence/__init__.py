"""Presence Tracker module for deskrelay.

Public API:
    PresenceTracker -- Per-topic membership holder
    derive_status -- Pure status derivation from a snapshot
"""

from deskrelay.presence.tracker import PresenceTracker, controller_keys, derive_status

__all__ = ["PresenceTracker", "controller_keys", "derive_status"]
