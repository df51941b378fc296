"""
Context Window Builder — a bounded transcript from a long history.

A new task gets background from the parent conversation, but the parent's
history can be far larger than any model should be fed. The builder applies
exactly one filter (time window if one parses, otherwise the last N user
turns), renders the survivors as a transcript and, if the result is still
over budget, keeps only the most recent characters.

The builder is stateless and pure apart from reading the clock, which is
injectable for tests.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from sidecar.context.transcript import ConversationMessage, format_transcript

logger = structlog.get_logger(__name__)

CHARS_PER_TOKEN = 4
TRUNCATION_NOTICE = "[Earlier context truncated...]\n\n"

_DURATION_RE = re.compile(r"^(\d+)([mhd])$")
_DURATION_UNITS = {
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


class ContextWindow(BaseModel):
    """The filtered messages plus their rendered (possibly truncated) text."""

    messages: list[ConversationMessage] = Field(default_factory=list)
    text: str = ""
    truncated: bool = False


def parse_duration(value: Optional[str]) -> Optional[timedelta]:
    """Parse ``30m`` / ``2h`` / ``1d``. Anything else (or zero) is None."""
    if not isinstance(value, str):
        return None
    match = _DURATION_RE.match(value.strip())
    if not match:
        return None
    amount = int(match.group(1))
    if amount <= 0:
        return None
    return amount * _DURATION_UNITS[match.group(2)]


def estimate_tokens(text: str) -> int:
    """Rough token count at ~4 characters per token."""
    if not text:
        return 0
    return len(text) // CHARS_PER_TOKEN


def take_last_turns(messages: Sequence[ConversationMessage], turns: int) -> list[ConversationMessage]:
    """Everything from the N-th-from-last user message onward.

    With N or fewer user messages the whole history is returned unchanged.
    """
    user_indices = [i for i, m in enumerate(messages) if m.type == "user"]
    if len(user_indices) <= turns:
        return list(messages)
    start = user_indices[len(user_indices) - turns]
    return list(messages[start:])


def filter_since(messages: Iterable[ConversationMessage], cutoff: datetime) -> list[ConversationMessage]:
    """Messages stamped at or after *cutoff*; unstamped messages are dropped."""
    return [m for m in messages if m.timestamp is not None and m.timestamp >= cutoff]


def truncate_to_budget(text: str, max_tokens: int) -> tuple[str, bool]:
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text, False
    return TRUNCATION_NOTICE + text[-max_chars:], True


def _coerce_messages(history: Iterable[Any]) -> list[ConversationMessage]:
    messages: list[ConversationMessage] = []
    for item in history or ():
        if isinstance(item, ConversationMessage):
            messages.append(item)
            continue
        msg = ConversationMessage.from_record(item)
        if msg is not None:
            messages.append(msg)
    return messages


class ContextWindowBuilder:
    """Builds bounded context strings from conversation histories."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build(
        self,
        history: Iterable[Any],
        turns: Optional[int] = 50,
        since: Optional[str] = None,
        max_tokens: int = 80000,
    ) -> str:
        return self.build_window(history, turns=turns, since=since, max_tokens=max_tokens).text

    def build_window(
        self,
        history: Iterable[Any],
        turns: Optional[int] = 50,
        since: Optional[str] = None,
        max_tokens: int = 80000,
    ) -> ContextWindow:
        messages = _coerce_messages(history)
        if not messages:
            return ContextWindow()

        window = parse_duration(since) if since else None
        if since and window is None:
            logger.debug("context_window.unparseable_since", since=since)

        if window is not None:
            messages = filter_since(messages, self._clock() - window)
        elif turns and turns > 0:
            messages = take_last_turns(messages, turns)

        text = format_transcript(messages)
        text, truncated = truncate_to_budget(text, max(1, int(max_tokens)))
        if truncated:
            logger.info(
                "context_window.truncated",
                max_tokens=max_tokens,
                messages=len(messages),
            )
        return ContextWindow(messages=messages, text=text, truncated=truncated)
