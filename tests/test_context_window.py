"""Tests for sidecar.context.window — bounded context from a conversation history."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sidecar.context.transcript import ConversationMessage
from sidecar.context.window import (
    CHARS_PER_TOKEN,
    TRUNCATION_NOTICE,
    ContextWindowBuilder,
    estimate_tokens,
    parse_duration,
    take_last_turns,
    truncate_to_budget,
)

NOW = datetime(2025, 1, 25, 12, 0, tzinfo=timezone.utc)


def _msg(kind: str, content: str = "", minutes_ago: float | None = None) -> ConversationMessage:
    ts = NOW - timedelta(minutes=minutes_ago) if minutes_ago is not None else None
    return ConversationMessage(type=kind, content=content, timestamp=ts)


def _conversation(user_turns: int) -> list[ConversationMessage]:
    """user/assistant pairs, oldest first, one minute apart."""
    messages = []
    for i in range(user_turns):
        age = (user_turns - i) * 2
        messages.append(_msg("user", f"question {i}", minutes_ago=age))
        messages.append(_msg("assistant", f"answer {i}", minutes_ago=age - 1))
    return messages


@pytest.fixture()
def builder() -> ContextWindowBuilder:
    return ContextWindowBuilder(clock=lambda: NOW)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestParseDuration:
    def test_units(self) -> None:
        assert parse_duration("30m") == timedelta(minutes=30)
        assert parse_duration("2h") == timedelta(hours=2)
        assert parse_duration("1d") == timedelta(days=1)

    def test_invalid(self) -> None:
        for value in ("", "2x", "h2", "1.5h", "-2h", None):
            assert parse_duration(value) is None

    def test_zero_is_invalid(self) -> None:
        assert parse_duration("0h") is None


def test_estimate_tokens() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("a" * 40) == 10


def test_take_last_turns_fewer_turns_returns_everything() -> None:
    messages = _conversation(3)
    assert take_last_turns(messages, 5) == messages


def test_truncate_to_budget_keeps_tail() -> None:
    text = "x" * 100 + "TAIL"
    out, truncated = truncate_to_budget(text, 2)
    assert truncated is True
    assert out == TRUNCATION_NOTICE + text[-2 * CHARS_PER_TOKEN:]
    assert out.endswith("TAIL")


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class TestContextWindowBuilder:
    def test_empty_history_is_empty_string(self, builder: ContextWindowBuilder) -> None:
        assert builder.build([]) == ""
        assert builder.build(None) == ""

    def test_turns_keeps_last_n_user_turns(self, builder: ContextWindowBuilder) -> None:
        window = builder.build_window(_conversation(10), turns=3)
        users = [m.content for m in window.messages if m.type == "user"]
        assert users == ["question 7", "question 8", "question 9"]
        # Messages following the first kept user message are retained.
        assert window.messages[-1].content == "answer 9"
        assert window.truncated is False

    def test_since_overrides_turns(self, builder: ContextWindowBuilder) -> None:
        history = [
            _msg("user", "old", minutes_ago=180),
            _msg("assistant", "old reply", minutes_ago=179),
            _msg("user", "recent", minutes_ago=30),
            _msg("assistant", "recent reply", minutes_ago=29),
            _msg("user", "no timestamp"),
        ]
        window = builder.build_window(history, turns=1, since="2h")
        assert [m.content for m in window.messages] == ["recent", "recent reply"]

    def test_unparseable_since_falls_back_to_turns(self, builder: ContextWindowBuilder) -> None:
        window = builder.build_window(_conversation(5), turns=2, since="yesterday")
        users = [m.content for m in window.messages if m.type == "user"]
        assert users == ["question 3", "question 4"]

    def test_rendering(self, builder: ContextWindowBuilder) -> None:
        history = [
            _msg("user", "How do I fix this?", minutes_ago=5),
            ConversationMessage(type="tool_use", tool="Read", tool_path="src/app.py"),
            _msg("assistant", "Like this.", minutes_ago=4),
        ]
        text = builder.build(history)
        parts = text.split("\n\n")
        assert len(parts) == 3
        assert parts[0].startswith("[User @ ") and parts[0].endswith("] How do I fix this?")
        assert parts[1] == "[Tool: Read src/app.py]"
        assert parts[2].startswith("[Assistant @ ") and parts[2].endswith("] Like this.")

    def test_truncation_to_token_budget(self, builder: ContextWindowBuilder) -> None:
        history = [
            _msg("user", "first " * 200, minutes_ago=10),
            _msg("assistant", "final words", minutes_ago=9),
        ]
        window = builder.build_window(history, max_tokens=10)
        assert window.truncated is True
        assert window.text.startswith(TRUNCATION_NOTICE)
        assert len(window.text) == len(TRUNCATION_NOTICE) + 10 * CHARS_PER_TOKEN
        assert window.text.endswith("final words")

    def test_result_bounded_for_any_budget(self, builder: ContextWindowBuilder) -> None:
        history = _conversation(40)
        for max_tokens in (1, 5, 50, 500):
            text = builder.build(history, max_tokens=max_tokens)
            assert len(text) <= max_tokens * CHARS_PER_TOKEN + len(TRUNCATION_NOTICE)

    def test_accepts_raw_records(self, builder: ContextWindowBuilder) -> None:
        history = [
            {"type": "user", "message": {"content": "hi"}, "timestamp": "2025-01-25T11:59:00Z"},
            {"type": "summary", "summary": "ignored"},
            {"role": "assistant", "content": [{"type": "text", "text": "hello"}]},
        ]
        window = builder.build_window(history)
        assert [m.content for m in window.messages] == ["hi", "hello"]
