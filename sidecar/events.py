"""
Events — lifecycle notifications for sidecar tasks.

Events are Pydantic models. Components that produce them (the scheduler and
the completion poller) mix in ``EventSource`` and call their listeners
synchronously, in registration order, right where the state change happens.

Delivery model:
  - listeners run inline, so a listener sees state exactly as of the event
  - a listener that raises is logged and skipped; the others still run
  - listeners must not block; anything slow belongs in a task they spawn
"""

from __future__ import annotations

import re
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

Listener = Callable[["SidecarEvent"], Any]

# Splits CamelCase including consecutive capitals (acronyms).
# "SubagentQueueProcessed" → ["Subagent", "Queue", "Processed"]
_CAMEL_SPLIT_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z][a-z]*")


class SidecarEvent(BaseModel):
    """Base class for all typed events published by sidecar components."""

    event_type: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.event_type:
            name = type(self).__name__.removesuffix("Event")
            parts = _CAMEL_SPLIT_RE.findall(name)
            self.event_type = ".".join(p.lower() for p in parts) if parts else name.lower()


class EventSource:
    """Mixin for components that publish events to direct observers."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        """Register an observer called synchronously for every event."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self, event: SidecarEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.error(
                    "events.listener_failed",
                    source=type(self).__name__,
                    event_type=event.event_type,
                    exc_info=True,
                )


# ---------------------------------------------------------------------------
# Event Definitions
# ---------------------------------------------------------------------------

class SubagentSpawnedEvent(SidecarEvent):
    """Emitted when a subagent has been dispatched to the runtime."""

    subagent_id: str
    agent_type: str
    model: str
    model_was_routed: bool = False
    session_id: Optional[str] = None


class SubagentCompletedEvent(SidecarEvent):
    """Emitted when a subagent is reported complete."""

    subagent_id: str
    agent_type: str
    result: str = ""


class SubagentFailedEvent(SidecarEvent):
    """Emitted when a subagent fails (dispatch error or external report)."""

    subagent_id: str
    agent_type: str
    error: str = ""


class SubagentFoldEvent(SidecarEvent):
    """Carries a completed subagent's summary back to whoever spawned it."""

    subagent_id: str
    agent_type: str
    briefing: str
    model: str
    model_was_routed: bool = False
    summary: str


class SubagentQueueProcessedEvent(SidecarEvent):
    """Emitted when a queued request is finally dispatched."""

    subagent_id: str


class HeadlessStartedEvent(SidecarEvent):
    """Emitted when a headless run has sent its initial prompt."""

    task_id: str
    session_id: str
    model: str


class HeadlessCompletedEvent(SidecarEvent):
    """Emitted when a headless run finishes on any path."""

    task_id: str
    completed: bool
    timed_out: bool
    error: Optional[str] = None


class HeadlessAbortedEvent(SidecarEvent):
    """Emitted when a headless run is aborted through its abort handle."""

    task_id: str
