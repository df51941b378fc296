"""
Orchestration — spawning subagents and driving headless runs to completion.

The scheduler bounds how many subagents run at once and folds their results
back to the parent. The poller drives one top-level task against the agent
runtime until it emits the completion marker or runs out of time.
"""

from __future__ import annotations

from sidecar.orchestration.models import (
    HeadlessResult,
    SessionStatus,
    SubagentRequest,
    SubagentStatus,
    SubagentTask,
)
from sidecar.orchestration.poller import CompletionPoller
from sidecar.orchestration.scheduler import (
    SubagentNotFoundError,
    SubagentScheduler,
    SubagentValidationError,
    format_fold_summary,
)

__all__ = [
    "CompletionPoller",
    "HeadlessResult",
    "SessionStatus",
    "SubagentNotFoundError",
    "SubagentRequest",
    "SubagentScheduler",
    "SubagentStatus",
    "SubagentTask",
    "SubagentValidationError",
    "format_fold_summary",
]
