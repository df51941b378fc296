"""
Orchestration Data Models — the language of delegation.

SubagentRequest describes *what* to do. SubagentTask tracks *what is
happening* to it. HeadlessResult reports how a top-level run ended.
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SubagentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SubagentStatus.COMPLETED, SubagentStatus.FAILED)


class SessionStatus(str, Enum):
    """Lifecycle of a top-level (headless or interactive) task."""

    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"
    TIMEOUT = "timeout"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_subagent_id() -> str:
    return f"subagent-{int(time.time() * 1000)}-{secrets.token_hex(4)[:7]}"


class SubagentRequest(BaseModel):
    """What the caller asks the scheduler to spawn."""

    agent_type: str
    briefing: str
    model: Optional[str] = None  # explicit override
    reasoning_effort: Optional[str] = None


class SubagentTask(BaseModel):
    """A spawned subagent and everything known about it."""

    id: str = Field(default_factory=generate_subagent_id)
    agent_type: str
    briefing: str
    model: str
    model_was_routed: bool = False
    status: SubagentStatus = SubagentStatus.PENDING
    external_session_id: Optional[str] = None
    parent_task_id: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def terminal(self) -> bool:
        return self.status.terminal


class HeadlessResult(BaseModel):
    """Outcome of driving one task to its completion marker."""

    task_id: str
    summary: str = ""
    completed: bool = False
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def session_status(self) -> SessionStatus:
        if self.error:
            return SessionStatus.ERROR
        if self.timed_out:
            return SessionStatus.TIMEOUT
        return SessionStatus.COMPLETE
