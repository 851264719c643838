"""Local identity file of the agent.

Holds the machine id generated on first run and the owner learned from
a claim, so a restarted agent registers as already linked.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

import yaml
from pydantic import ValidationError

from deskrelay.domain.models import LocalState

logger = logging.getLogger(__name__)


class LocalStateStore:
    """Loads or creates the agent's YAML state file."""

    def __init__(self, path: str | Path = "~/.deskrelay/state.yaml") -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> LocalState:
        """Read the state file, creating it with a new machine id if absent."""
        if self._path.exists():
            with open(self._path) as f:
                data = yaml.safe_load(f) or {}
            try:
                state = LocalState.model_validate(data)
            except ValidationError as e:
                raise ValueError(f"Invalid agent state file {self._path}: {e}") from e
            logger.debug("Loaded agent state for machine %s", state.machine_id)
            return state

        state = LocalState(machine_id=str(uuid.uuid4()))
        self.save(state)
        logger.info("Created agent state for new machine %s at %s", state.machine_id, self._path)
        return state

    def save(self, state: LocalState) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w") as f:
            yaml.safe_dump(state.model_dump(exclude_none=True), f, default_flow_style=False)
