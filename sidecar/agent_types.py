"""
Agent roles — the closed set of permission profiles a task can run under.

Tool permissions are enforced by the external runtime's own agent framework;
the descriptions here only feed the system prompt. Primary roles drive a
top-level session, subagent roles are what the scheduler will spawn.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

PRIMARY_AGENTS: tuple[str, ...] = ("Build", "Plan")
SUBAGENT_TYPES: tuple[str, ...] = ("General", "Explore")
RUNTIME_AGENTS: tuple[str, ...] = PRIMARY_AGENTS + SUBAGENT_TYPES

# The role that is eligible for routing to a cheaper model.
EXPLORE = "Explore"


@dataclass(frozen=True)
class AgentRole:
    name: str
    description: str
    tool_access: str
    read_only: bool


_SUBAGENT_ROLES: dict[str, AgentRole] = {
    "general": AgentRole(
        name="General",
        description="Full-access subagent for research and parallel tasks",
        tool_access="Full (read, write, bash, task)",
        read_only=False,
    ),
    "explore": AgentRole(
        name="Explore",
        description="Read-only subagent for codebase exploration",
        tool_access="Read-only",
        read_only=True,
    ),
}


def normalize_agent_type(agent_type: object) -> Optional[str]:
    """Canonical capitalization for known roles; custom names pass through.

    Returns None for empty or non-string input.
    """
    if not isinstance(agent_type, str) or not agent_type.strip():
        return None
    lowered = agent_type.strip().lower()
    for native in RUNTIME_AGENTS:
        if native.lower() == lowered:
            return native
    return agent_type.strip()


def normalize_subagent(agent_type: object) -> Optional[str]:
    """Canonical subagent role name, or None if it is not a subagent role."""
    if not isinstance(agent_type, str):
        return None
    role = _SUBAGENT_ROLES.get(agent_type.strip().lower())
    return role.name if role else None


def is_valid_subagent(agent_type: object) -> bool:
    return normalize_subagent(agent_type) is not None


def get_subagent_role(agent_type: object) -> Optional[AgentRole]:
    if not isinstance(agent_type, str):
        return None
    return _SUBAGENT_ROLES.get(agent_type.strip().lower())


def map_primary_agent(agent: Optional[str]) -> str:
    """Map a primary-session agent name to the runtime's agent name.

    Empty input defaults to ``Build``; native names are matched
    case-insensitively; custom agents are passed through unchanged.
    """
    return normalize_agent_type(agent) or "Build"


def list_subagent_types() -> list[str]:
    return [role.name for role in _SUBAGENT_ROLES.values()]
