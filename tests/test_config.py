"""Tests for sidecar.config — settings slices, env aliases, and normalization."""

from __future__ import annotations

from pathlib import Path

import pytest

from sidecar.config import (
    DEFAULT_EXPLORE_MODEL,
    ContextConfig,
    HeadlessConfig,
    RoutingConfig,
    RuntimeConfig,
    SchedulerConfig,
    SidecarConfig,
)

_ENV_VARS = [
    "SIDECAR_MAX_CONCURRENT",
    "SIDECAR_DISABLE_MODEL_ROUTING",
    "SIDECAR_EXPLORE_MODEL",
    "SIDECAR_AGENT_MODELS_PATH",
    "SIDECAR_TIMEOUT",
    "SIDECAR_POLL_INTERVAL",
    "SIDECAR_GRACE_PERIOD",
    "SIDECAR_CONTEXT_TURNS",
    "SIDECAR_CONTEXT_SINCE",
    "SIDECAR_CONTEXT_MAX_TOKENS",
    "SIDECAR_OPENCODE_BIN",
    "SIDECAR_OPENCODE_PORT",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_scheduler(self) -> None:
        assert SchedulerConfig().max_concurrent == 5

    def test_routing(self) -> None:
        config = RoutingConfig()
        assert config.routing_enabled is True
        assert config.explore_model == DEFAULT_EXPLORE_MODEL
        assert config.agent_models_path.name == "agent-models.json"

    def test_headless(self) -> None:
        config = HeadlessConfig()
        assert config.timeout_seconds == 900.0
        assert config.poll_interval == 2.0
        assert config.grace_period == 30.0

    def test_context(self) -> None:
        config = ContextConfig()
        assert (config.turns, config.since, config.max_tokens) == (50, None, 80000)

    def test_runtime(self) -> None:
        config = RuntimeConfig()
        assert (config.binary, config.hostname, config.port) == ("opencode", "127.0.0.1", 4096)

    def test_aggregate(self) -> None:
        config = SidecarConfig()
        assert config.scheduler.max_concurrent == 5
        assert config.context.turns == 50


class TestEnvironment:
    def test_env_aliases(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("SIDECAR_MAX_CONCURRENT", "2")
        monkeypatch.setenv("SIDECAR_DISABLE_MODEL_ROUTING", "true")
        monkeypatch.setenv("SIDECAR_EXPLORE_MODEL", "openrouter/x/cheap")
        monkeypatch.setenv("SIDECAR_AGENT_MODELS_PATH", str(tmp_path / "prefs.json"))
        monkeypatch.setenv("SIDECAR_TIMEOUT", "60")
        monkeypatch.setenv("SIDECAR_CONTEXT_SINCE", "2h")
        monkeypatch.setenv("SIDECAR_OPENCODE_PORT", "5123")

        assert SchedulerConfig().max_concurrent == 2
        routing = RoutingConfig()
        assert routing.routing_enabled is False
        assert routing.explore_model == "openrouter/x/cheap"
        assert routing.agent_models_path == tmp_path / "prefs.json"
        assert HeadlessConfig().timeout_seconds == 60.0
        assert ContextConfig().since == "2h"
        assert RuntimeConfig().port == 5123

    def test_field_names_accepted(self) -> None:
        assert SchedulerConfig(max_concurrent=3).max_concurrent == 3
        assert HeadlessConfig(timeout_seconds=5, poll_interval=1).poll_interval == 1.0


class TestNormalization:
    def test_concurrency_at_least_one(self) -> None:
        assert SchedulerConfig(max_concurrent=0).max_concurrent == 1
        assert SchedulerConfig(max_concurrent=-4).max_concurrent == 1

    def test_blank_explore_model_falls_back(self) -> None:
        assert RoutingConfig(explore_model="   ").explore_model == DEFAULT_EXPLORE_MODEL

    def test_negative_timing_clamped(self) -> None:
        config = HeadlessConfig(timeout_seconds=-1, poll_interval=-2, grace_period=-3, health_attempts=0)
        assert (config.timeout_seconds, config.poll_interval, config.grace_period) == (0.0, 0.0, 0.0)
        assert config.health_attempts == 1

    def test_context_limits(self) -> None:
        config = ContextConfig(turns=-5, max_tokens=0, since="  ")
        assert (config.turns, config.max_tokens, config.since) == (0, 1, None)

    def test_runtime_limits(self) -> None:
        config = RuntimeConfig(port=70000, startup_timeout=0, request_timeout=0)
        assert config.port == 65535
        assert config.startup_timeout == 0.5
        assert config.request_timeout == 1.0
