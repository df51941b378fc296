"""
Context — turning a parent conversation into background for a new task.

Resolve which log to read (``session``), parse it (``transcript``), and cut it
down to a bounded window (``window``). ``drift`` measures how far the parent
moved on afterwards.
"""

from __future__ import annotations

from sidecar.context.session import SessionResolution, SessionResolver
from sidecar.context.transcript import ConversationMessage
from sidecar.context.window import ContextWindow, ContextWindowBuilder

__all__ = [
    "ContextWindow",
    "ContextWindowBuilder",
    "ConversationMessage",
    "SessionResolution",
    "SessionResolver",
]
