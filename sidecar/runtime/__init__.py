"""
Runtime — the boundary to the external agent-execution service.
"""

from __future__ import annotations

from sidecar.runtime.base import (
    AgentRuntime,
    PromptRequest,
    PromptResponse,
    RuntimeErrorBase,
    RuntimeHandle,
    RuntimeLauncher,
    RuntimeMessage,
    RuntimeRequestError,
    RuntimeStartError,
    RuntimeStatus,
    SessionCreationError,
)

__all__ = [
    "AgentRuntime",
    "PromptRequest",
    "PromptResponse",
    "RuntimeErrorBase",
    "RuntimeHandle",
    "RuntimeLauncher",
    "RuntimeMessage",
    "RuntimeRequestError",
    "RuntimeStartError",
    "RuntimeStatus",
    "SessionCreationError",
]
