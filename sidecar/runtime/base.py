"""
Agent Runtime — the external service that actually executes prompts.

The runtime is a black box: it accepts a prompt, works asynchronously
(possibly calling tools), and produces free text. Everything in sidecar talks
to it only through ``AgentRuntime``; ``RuntimeLauncher`` owns starting and
stopping the server process behind it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Literal, Optional

from pydantic import BaseModel, Field

RuntimeState = Literal["idle", "running", "completed", "error"]
STOPPED_STATES: frozenset[str] = frozenset({"idle", "completed", "error"})


class RuntimeErrorBase(RuntimeError):
    """Base for failures reported by or about the external runtime."""


class SessionCreationError(RuntimeErrorBase):
    """The backend rejected a new session."""


class RuntimeRequestError(RuntimeErrorBase):
    """A request to the runtime failed (transport or non-success status)."""


class RuntimeStartError(RuntimeErrorBase):
    """The runtime server could not be started."""


class PromptRequest(BaseModel):
    model: str
    briefing_text: str
    system: Optional[str] = None
    agent_role: Optional[str] = None
    reasoning_effort: Optional[str] = None


class PromptResponse(BaseModel):
    text_parts: list[str] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.text_parts)


class RuntimeMessage(BaseModel):
    role: str = "assistant"
    text_parts: list[str] = Field(default_factory=list)


class RuntimeStatus(BaseModel):
    status: RuntimeState
    error: Optional[str] = None

    @property
    def stopped(self) -> bool:
        return self.status in STOPPED_STATES


class AgentRuntime(ABC):
    """Abstract client for the agent-execution runtime."""

    @abstractmethod
    async def create_session(self, parent_id: Optional[str] = None) -> str:
        """Create a session and return its id. Raises SessionCreationError."""

    @abstractmethod
    async def send_prompt(self, session_id: str, request: PromptRequest) -> PromptResponse:
        """Send a prompt and return the text parts of the immediate response."""

    @abstractmethod
    async def get_messages(self, session_id: str) -> list[RuntimeMessage]:
        """Return the session's full message log."""

    @abstractmethod
    async def get_status(self, session_id: str) -> RuntimeStatus:
        """Return whether the session is still producing work."""

    @abstractmethod
    async def check_health(self) -> bool:
        """True once the runtime is ready to accept requests."""

    async def close(self) -> None:
        """Release client-side resources. Default: nothing to release."""


class RuntimeHandle:
    """A started runtime: its URL, a client bound to it, and a way to stop it.

    Usable as an async context manager so the server is released on every
    exit path.
    """

    def __init__(
        self,
        url: str,
        runtime: AgentRuntime,
        closer: Optional[Callable[[], Awaitable[None]]] = None,
        session_handle: Any = None,
    ) -> None:
        self.url = url
        self.runtime = runtime
        self.session_handle = session_handle
        self._closer = closer
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.runtime.close()
        finally:
            if self._closer is not None:
                await self._closer()

    async def __aenter__(self) -> "RuntimeHandle":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class RuntimeLauncher(ABC):
    """Starts a runtime server and hands back a ``RuntimeHandle``."""

    @abstractmethod
    async def start(self, options: Optional[dict[str, Any]] = None) -> RuntimeHandle:
        """Start the runtime. Raises RuntimeStartError on failure."""
