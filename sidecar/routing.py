"""
Model Router — which model should a task run on?

Explore subagents are cheap, read-only fact-finding, so by default they go to
a low-cost model. Everything else keeps the parent's model unless the caller
named one explicitly. Per-role preferences come from an injected
``AgentModelPreferences`` provider (persisted as JSON) rather than from a
module-level singleton, so the router stays pure and easy to test.

Resolution priority:
  1. explicit model                    → explicit_override
  2. top-level (non-subagent) task     → top_level_session
  3. routing disabled                  → routing_disabled
  4. Explore role                      → routed_explore
  5. role with a ``select`` preference → routed_preference
  6. everything else                   → inherited_parent
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal, Optional

import structlog
from pydantic import BaseModel, Field

from sidecar.agent_types import EXPLORE, normalize_agent_type
from sidecar.config import DEFAULT_EXPLORE_MODEL, RoutingConfig

logger = structlog.get_logger(__name__)

RoutingReason = Literal[
    "explicit_override",
    "top_level_session",
    "routing_disabled",
    "routed_explore",
    "routed_preference",
    "inherited_parent",
]

PREFERENCE_ROLES = ("Explore", "Plan", "General")


class ModelResolution(BaseModel):
    model: str
    was_routed: bool
    reason: RoutingReason


class AgentModelSetting(BaseModel):
    """Per-role preference: inherit the parent's model or use a chosen one."""

    mode: Literal["inherit", "select"] = "inherit"
    model: Optional[str] = None

    @classmethod
    def validated(cls, raw: object) -> "AgentModelSetting":
        """Coerce arbitrary JSON into a well-formed setting."""
        if not isinstance(raw, dict):
            return cls()
        mode = "select" if raw.get("mode") == "select" else "inherit"
        model = raw.get("model")
        if mode == "select" and model:
            return cls(mode="select", model=str(model))
        return cls()

    @property
    def selected_model(self) -> Optional[str]:
        return self.model if self.mode == "select" and self.model else None


class AgentModelPreferences(BaseModel):
    """Agent-type → model preferences, loaded from and saved to JSON."""

    settings: dict[str, AgentModelSetting] = Field(default_factory=dict)

    @classmethod
    def defaults(cls, explore_model: str = DEFAULT_EXPLORE_MODEL) -> "AgentModelPreferences":
        return cls(
            settings={
                "Explore": AgentModelSetting(mode="select", model=explore_model),
                "Plan": AgentModelSetting(),
                "General": AgentModelSetting(),
            }
        )

    @classmethod
    def load(cls, path: Path, explore_model: str = DEFAULT_EXPLORE_MODEL) -> "AgentModelPreferences":
        """Load preferences merged over defaults; unreadable files give defaults."""
        prefs = cls.defaults(explore_model)
        if not path.exists():
            return prefs
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("routing.preferences_unreadable", path=str(path), error=str(e))
            return prefs
        if not isinstance(raw, dict):
            return prefs
        for role in PREFERENCE_ROLES:
            if role in raw:
                merged = {**prefs.settings[role].model_dump(), **(raw[role] if isinstance(raw[role], dict) else {})}
                prefs.settings[role] = AgentModelSetting.validated(merged)
        return prefs

    def save(self, path: Path) -> bool:
        payload = {
            role: AgentModelSetting.validated(
                self.settings[role].model_dump() if role in self.settings else None
            ).model_dump()
            for role in PREFERENCE_ROLES
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error("routing.preferences_write_failed", path=str(path), error=str(e))
            return False
        return True

    def with_setting(self, agent_type: str, mode: str, model: Optional[str] = None) -> "AgentModelPreferences":
        """Return a copy with one role's setting replaced."""
        role = normalize_agent_type(agent_type)
        if role not in PREFERENCE_ROLES:
            raise ValueError(f"Invalid agent type: {agent_type}")
        settings = dict(self.settings)
        settings[role] = AgentModelSetting.validated({"mode": mode, "model": model})
        return AgentModelPreferences(settings=settings)

    def setting_for(self, agent_type: Optional[str]) -> Optional[AgentModelSetting]:
        if agent_type is None:
            return None
        return self.settings.get(agent_type)


class ModelRouter:
    """Resolves the effective model for a task. Pure and side-effect free."""

    def __init__(
        self,
        config: RoutingConfig,
        preferences: Optional[AgentModelPreferences] = None,
    ) -> None:
        self._config = config
        self._preferences = preferences

    @classmethod
    def from_config(cls, config: RoutingConfig) -> "ModelRouter":
        """Router with preferences loaded from ``config.agent_models_path``."""
        preferences = AgentModelPreferences.load(Path(config.agent_models_path), config.explore_model)
        return cls(config, preferences)

    def resolve(
        self,
        agent_type: Optional[str],
        explicit_model: Optional[str] = None,
        parent_model: str = "",
        is_subagent: bool = True,
    ) -> ModelResolution:
        role = normalize_agent_type(agent_type)

        if explicit_model:
            return ModelResolution(model=explicit_model, was_routed=False, reason="explicit_override")

        if not is_subagent:
            return ModelResolution(model=parent_model, was_routed=False, reason="top_level_session")

        if not self._config.routing_enabled:
            return ModelResolution(model=parent_model, was_routed=False, reason="routing_disabled")

        setting = self._preferences.setting_for(role) if self._preferences else None

        if role == EXPLORE:
            if setting is not None and setting.mode == "inherit":
                return ModelResolution(model=parent_model, was_routed=False, reason="inherited_parent")
            model = (setting.selected_model if setting else None) or self._config.explore_model
            return ModelResolution(model=model, was_routed=model != parent_model, reason="routed_explore")

        if setting is not None and setting.selected_model:
            model = setting.selected_model
            return ModelResolution(model=model, was_routed=model != parent_model, reason="routed_preference")

        return ModelResolution(model=parent_model, was_routed=False, reason="inherited_parent")
