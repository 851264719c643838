"""Agent module for deskrelay.

Runs on the controlled machine: registers for pairing, announces
presence and executes incoming commands on the Input Host.

Public API:
    AgentProcess -- Registration, presence and dispatch
    CommandExecutor -- Canonical command to Input Host primitives
    LocalStateStore -- Agent identity file
"""

from deskrelay.agent.executor import CommandExecutor, normalize_key
from deskrelay.agent.process import AgentProcess
from deskrelay.agent.state import LocalStateStore

__all__ = ["AgentProcess", "CommandExecutor", "LocalStateStore", "normalize_key"]
