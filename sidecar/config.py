# sidecar/config.py
"""
Configuration for Sidecar.

All tunables flow through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic. Each subsystem gets its
own settings class so tests can construct exactly the slice they need.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above sidecar/ package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

DEFAULT_EXPLORE_MODEL = "openrouter/google/gemini-3-flash-preview"
DEFAULT_AGENT_MODELS_PATH = Path.home() / ".config" / "sidecar" / "agent-models.json"


class SchedulerConfig(BaseSettings):
    """Configuration for the subagent scheduler."""

    max_concurrent: int = Field(5, alias="SIDECAR_MAX_CONCURRENT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "SchedulerConfig":
        self.max_concurrent = max(1, int(self.max_concurrent))
        return self


class RoutingConfig(BaseSettings):
    """Configuration for automatic model routing of subagents."""

    disable_routing: bool = Field(False, alias="SIDECAR_DISABLE_MODEL_ROUTING")
    explore_model: str = Field(DEFAULT_EXPLORE_MODEL, alias="SIDECAR_EXPLORE_MODEL")
    agent_models_path: Path = Field(
        DEFAULT_AGENT_MODELS_PATH, alias="SIDECAR_AGENT_MODELS_PATH"
    )

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @property
    def routing_enabled(self) -> bool:
        return not self.disable_routing

    @model_validator(mode="after")
    def normalize_explore_model(self) -> "RoutingConfig":
        self.explore_model = self.explore_model.strip() or DEFAULT_EXPLORE_MODEL
        return self


class HeadlessConfig(BaseSettings):
    """Configuration for headless (polling) execution of a top-level task."""

    timeout_seconds: float = Field(15 * 60.0, alias="SIDECAR_TIMEOUT")
    poll_interval: float = Field(2.0, alias="SIDECAR_POLL_INTERVAL")
    grace_period: float = Field(30.0, alias="SIDECAR_GRACE_PERIOD")
    health_attempts: int = Field(30, alias="SIDECAR_HEALTH_ATTEMPTS")
    health_interval: float = Field(0.5, alias="SIDECAR_HEALTH_INTERVAL")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_timing(self) -> "HeadlessConfig":
        self.timeout_seconds = max(0.0, float(self.timeout_seconds))
        self.poll_interval = max(0.0, float(self.poll_interval))
        self.grace_period = max(0.0, float(self.grace_period))
        self.health_attempts = max(1, int(self.health_attempts))
        self.health_interval = max(0.0, float(self.health_interval))
        return self


class ContextConfig(BaseSettings):
    """Configuration for the context window handed to a new task."""

    turns: int = Field(50, alias="SIDECAR_CONTEXT_TURNS")
    since: Optional[str] = Field(None, alias="SIDECAR_CONTEXT_SINCE")
    max_tokens: int = Field(80000, alias="SIDECAR_CONTEXT_MAX_TOKENS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "ContextConfig":
        self.turns = max(0, int(self.turns))
        self.max_tokens = max(1, int(self.max_tokens))
        if self.since is not None and not self.since.strip():
            self.since = None
        return self


class RuntimeConfig(BaseSettings):
    """Configuration for launching the external agent runtime server."""

    binary: str = Field("opencode", alias="SIDECAR_OPENCODE_BIN")
    hostname: str = Field("127.0.0.1", alias="SIDECAR_OPENCODE_HOST")
    port: int = Field(4096, alias="SIDECAR_OPENCODE_PORT")
    startup_timeout: float = Field(10.0, alias="SIDECAR_OPENCODE_STARTUP_TIMEOUT")
    request_timeout: float = Field(300.0, alias="SIDECAR_OPENCODE_REQUEST_TIMEOUT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "RuntimeConfig":
        self.port = max(0, min(65535, int(self.port)))
        self.startup_timeout = max(0.5, float(self.startup_timeout))
        self.request_timeout = max(1.0, float(self.request_timeout))
        return self


class SidecarConfig:
    """Aggregates every settings slice into one object handed to the runner."""

    def __init__(self) -> None:
        self.scheduler = SchedulerConfig()
        self.routing = RoutingConfig()
        self.headless = HeadlessConfig()
        self.context = ContextConfig()
        self.runtime = RuntimeConfig()

        logger.debug(
            "config.loaded",
            max_concurrent=self.scheduler.max_concurrent,
            routing_enabled=self.routing.routing_enabled,
            timeout=self.headless.timeout_seconds,
        )
