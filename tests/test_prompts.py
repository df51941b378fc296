"""Tests for sidecar.prompts and sidecar.agent_types."""

from __future__ import annotations

import pytest

from sidecar.agent_types import (
    get_subagent_role,
    is_valid_subagent,
    list_subagent_types,
    map_primary_agent,
    normalize_agent_type,
    normalize_subagent,
)
from sidecar.prompts import (
    BRIEF_WRAP_UP_PROMPT,
    COMPLETE_MARKER,
    WRAP_UP_PROMPT,
    build_continuation_context,
    build_subagent_prompt,
    build_system_prompt,
    context_section,
    extract_summary,
    wrap_up_prompt,
)


class TestAgentTypes:
    def test_map_primary_agent(self) -> None:
        assert map_primary_agent(None) == "Build"
        assert map_primary_agent("") == "Build"
        assert map_primary_agent("plan") == "Plan"
        assert map_primary_agent("  EXPLORE ") == "Explore"
        assert map_primary_agent("my-custom-agent") == "my-custom-agent"

    def test_normalize_agent_type(self) -> None:
        assert normalize_agent_type("general") == "General"
        assert normalize_agent_type(42) is None
        assert normalize_agent_type("   ") is None

    def test_subagent_roles(self) -> None:
        assert list_subagent_types() == ["General", "Explore"]
        assert normalize_subagent("explore") == "Explore"
        assert normalize_subagent("Build") is None
        assert is_valid_subagent("GENERAL") is True
        assert is_valid_subagent(None) is False

        explore = get_subagent_role("Explore")
        assert explore is not None and explore.read_only is True
        assert get_subagent_role("general").read_only is False
        assert get_subagent_role("plan") is None


class TestSystemPrompt:
    def test_headless_prompt(self) -> None:
        prompt = build_system_prompt("[User] hello", "/work/app", headless=True)
        assert prompt.startswith("# SIDECAR SESSION")
        assert "<previous_conversation" in prompt
        assert "[User] hello" in prompt
        assert "Project: /work/app" in prompt
        assert "HEADLESS MODE INSTRUCTIONS" in prompt
        assert "**Attempted Approaches:**" in prompt
        assert prompt.rstrip().endswith(COMPLETE_MARKER)

    def test_empty_context_omitted(self) -> None:
        prompt = build_system_prompt("  ", "/work/app", headless=True)
        assert "<previous_conversation" not in prompt
        assert context_section(None) == ""

    @pytest.mark.parametrize(
        ("length", "expected"),
        [("brief", "BRIEF summary"), ("verbose", "COMPREHENSIVE"), ("bogus", "**Attempted Approaches:**")],
    )
    def test_summary_lengths(self, length: str, expected: str) -> None:
        assert expected in build_system_prompt("", "/p", headless=True, summary_length=length)

    def test_interactive_prompt(self) -> None:
        prompt = build_system_prompt("", "/p", headless=False)
        assert "INTERACTIVE MODE" in prompt
        assert COMPLETE_MARKER not in prompt

    def test_subagent_prompt(self) -> None:
        prompt = build_subagent_prompt(get_subagent_role("Explore"))
        assert prompt.startswith("You are a Explore sub-agent.")
        assert "Read-only" in prompt


class TestMarker:
    def test_wrap_up_prompt(self) -> None:
        assert wrap_up_prompt("brief") == BRIEF_WRAP_UP_PROMPT
        assert wrap_up_prompt("normal") == WRAP_UP_PROMPT
        assert COMPLETE_MARKER in WRAP_UP_PROMPT

    def test_extract_summary(self) -> None:
        assert extract_summary("") == ""
        assert extract_summary("no marker here  ") == "no marker here"
        assert extract_summary(f"  result\n{COMPLETE_MARKER}\nafter {COMPLETE_MARKER}") == "result"


class TestContinuationContext:
    def test_sections(self) -> None:
        text = build_continuation_context(
            {"taskId": "abc12345", "briefing": "Map the auth flow"},
            "## Sidecar Results: Auth",
            "[user @ 10:00:00] Map the auth flow",
        )
        assert text.startswith("## PREVIOUS SIDECAR SESSION")
        assert "previous session (abc12345)" in text
        assert "### Previous Task\nMap the auth flow" in text
        assert "### Previous Summary\n## Sidecar Results: Auth" in text
        assert "### Previous Conversation Excerpt\n[user @ 10:00:00] Map the auth flow" in text
        assert text.rstrip().endswith("continue or extend that work.")

    def test_placeholders(self) -> None:
        text = build_continuation_context({"taskId": "t"}, None, "")
        assert "No briefing recorded" in text
        assert "No summary available" in text
        assert "No conversation recorded" in text

    def test_keeps_most_recent_conversation(self) -> None:
        conversation = "A" * 50 + "B" * 8
        text = build_continuation_context({"taskId": "t"}, "s", conversation, max_tokens=2)
        assert "BBBBBBBB" in text
        assert "A" * 50 not in text
