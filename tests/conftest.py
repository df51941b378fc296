"""
Shared fixtures for the Sidecar test suite.

Provides a scriptable in-memory agent runtime, a launcher around it, a fake
clock for the poller, and default config slices, so individual test modules
can focus on behavior rather than setup.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from sidecar.config import HeadlessConfig, RoutingConfig, SchedulerConfig
from sidecar.runtime.base import (
    AgentRuntime,
    PromptRequest,
    PromptResponse,
    RuntimeHandle,
    RuntimeLauncher,
    RuntimeMessage,
    RuntimeStatus,
)


# ---------------------------------------------------------------------------
# Runtime fakes
# ---------------------------------------------------------------------------

class FakeRuntime(AgentRuntime):
    """Scriptable AgentRuntime.

    ``responses`` are consumed one per send_prompt; ``statuses`` one per
    get_status with the last entry repeating. A status entry may be an
    exception instance, which is raised instead. ``message_failures`` are
    raised by get_messages, one per call, before it starts succeeding.
    """

    def __init__(
        self,
        responses: Optional[list[list[str]]] = None,
        statuses: Optional[list[Any]] = None,
        messages: Optional[list[RuntimeMessage]] = None,
        healthy: bool = True,
    ) -> None:
        self.responses = list(responses or [])
        self.statuses = list(statuses or [])
        self.messages = list(messages or [])
        self.healthy = healthy
        self.fail_create: Optional[BaseException] = None
        self.fail_prompt: Optional[BaseException] = None
        self.message_failures: list[BaseException] = []
        self.prompt_gate: Optional[asyncio.Event] = None

        self.sessions: list[tuple[str, Optional[str]]] = []
        self.prompts: list[tuple[str, PromptRequest]] = []
        self.health_calls = 0
        self.status_calls = 0
        self.message_calls = 0
        self.closed = False

    async def create_session(self, parent_id: Optional[str] = None) -> str:
        if self.fail_create is not None:
            raise self.fail_create
        session_id = f"ses-{len(self.sessions) + 1}"
        self.sessions.append((session_id, parent_id))
        return session_id

    async def send_prompt(self, session_id: str, request: PromptRequest) -> PromptResponse:
        self.prompts.append((session_id, request))
        if self.prompt_gate is not None:
            await self.prompt_gate.wait()
        if self.fail_prompt is not None:
            raise self.fail_prompt
        parts = self.responses.pop(0) if self.responses else []
        return PromptResponse(text_parts=parts)

    async def get_messages(self, session_id: str) -> list[RuntimeMessage]:
        self.message_calls += 1
        if self.message_failures:
            raise self.message_failures.pop(0)
        return list(self.messages)

    async def get_status(self, session_id: str) -> RuntimeStatus:
        self.status_calls += 1
        if not self.statuses:
            return RuntimeStatus(status="running")
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def check_health(self) -> bool:
        self.health_calls += 1
        return self.healthy

    async def close(self) -> None:
        self.closed = True


class FakeLauncher(RuntimeLauncher):
    """Hands out a RuntimeHandle around a FakeRuntime and records closes."""

    def __init__(self, runtime: FakeRuntime, fail: Optional[BaseException] = None) -> None:
        self.runtime = runtime
        self.fail = fail
        self.options: Optional[dict[str, Any]] = None
        self.stopped = 0

    async def start(self, options: Optional[dict[str, Any]] = None) -> RuntimeHandle:
        self.options = options
        if self.fail is not None:
            raise self.fail

        async def _stop() -> None:
            self.stopped += 1

        return RuntimeHandle(url="http://127.0.0.1:4096", runtime=self.runtime, closer=_stop)


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingListener:
    """Listener that keeps every event it is handed."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    def __call__(self, event: Any) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.event_type for e in self.events]


def assistant(*parts: str) -> RuntimeMessage:
    return RuntimeMessage(role="assistant", text_parts=list(parts))


async def settle(rounds: int = 10) -> None:
    """Let scheduled callbacks and background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def headless_config() -> HeadlessConfig:
    return HeadlessConfig(
        timeout_seconds=10.0,
        poll_interval=2.0,
        grace_period=30.0,
        health_attempts=3,
        health_interval=0.5,
    )


@pytest.fixture()
def routing_config() -> RoutingConfig:
    return RoutingConfig(
        disable_routing=False,
        explore_model="openrouter/google/gemini-3-flash-preview",
        agent_models_path="/nonexistent/agent-models.json",
    )


@pytest.fixture()
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(max_concurrent=5)


@pytest.fixture()
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()
