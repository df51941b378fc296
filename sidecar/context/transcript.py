"""
Transcript — reading conversation logs and rendering them as text.

Conversation logs are JSONL files: one JSON object per line, append-only,
ordered by occurrence. Records we do not understand (summaries, snapshots,
malformed lines) are skipped rather than treated as errors, so a partially
corrupt log still yields whatever context it can.

Only uses: json, datetime, pathlib, pydantic, structlog — no sidecar imports.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Literal, Optional

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

MessageType = Literal["user", "assistant", "tool_use"]
_KNOWN_TYPES = {"user", "assistant", "tool_use"}


class ConversationMessage(BaseModel):
    """One entry of a conversation log, as far as context building cares."""

    type: MessageType
    content: str = ""
    timestamp: Optional[datetime] = None
    tool: Optional[str] = None
    tool_path: Optional[str] = None

    @classmethod
    def from_record(cls, record: Any) -> Optional["ConversationMessage"]:
        """Build a message from a raw log record, or None if unusable."""
        if not isinstance(record, dict):
            return None
        msg_type = record.get("type") or record.get("role")
        if msg_type not in _KNOWN_TYPES:
            return None

        timestamp = parse_timestamp(record.get("timestamp"))
        if msg_type == "tool_use":
            tool_input = record.get("input")
            path = tool_input.get("path") if isinstance(tool_input, dict) else None
            return cls(
                type="tool_use",
                timestamp=timestamp,
                tool=str(record.get("tool") or "Unknown"),
                tool_path=str(path) if path else None,
            )
        return cls(type=msg_type, content=extract_content(record), timestamp=timestamp)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        # Epoch milliseconds
        try:
            parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_content(record: dict[str, Any]) -> str:
    """Pull text out of a record.

    Handles both ``{"message": {"content": ...}}`` (Claude Code logs) and a
    flat ``{"content": ...}`` (sidecar's own conversation logs). Content may
    be a plain string or a list of blocks with ``text`` fields.
    """
    message = record.get("message")
    if isinstance(message, dict):
        content = message.get("content")
    else:
        content = record.get("content")

    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            str(block.get("text") or "") for block in content if isinstance(block, dict)
        )
    return ""


def parse_jsonl_line(line: str) -> Optional[dict[str, Any]]:
    if not line or not line.strip():
        return None
    try:
        value = json.loads(line)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def read_records(path: Path) -> list[dict[str, Any]]:
    """Read every parseable JSON object from a JSONL file.

    Raises OSError if the file cannot be read.
    """
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    records = [parse_jsonl_line(line) for line in text.splitlines()]
    return [r for r in records if r is not None]


def read_conversation(path: Path) -> list[ConversationMessage]:
    """Read a conversation log into messages, skipping unusable records."""
    messages: list[ConversationMessage] = []
    for record in read_records(path):
        msg = ConversationMessage.from_record(record)
        if msg is not None:
            messages.append(msg)
    logger.debug("transcript.read", path=str(path), messages=len(messages))
    return messages


def format_time(timestamp: Optional[datetime]) -> str:
    """Render a timestamp as local wall-clock time, e.g. ``10:30 AM``."""
    if timestamp is None:
        return ""
    return timestamp.astimezone().strftime("%I:%M %p")


def format_message(message: ConversationMessage) -> str:
    if message.type == "tool_use":
        tool = message.tool or "Unknown"
        return f"[Tool: {tool} {message.tool_path}]" if message.tool_path else f"[Tool: {tool}]"
    role = "User" if message.type == "user" else "Assistant"
    return f"[{role} @ {format_time(message.timestamp)}] {message.content}"


def format_transcript(messages: Iterable[ConversationMessage]) -> str:
    """Join rendered messages with blank lines; empty renderings are dropped."""
    rendered = (format_message(m) for m in messages)
    return "\n\n".join(text for text in rendered if text)
