"""
Context drift — how far the world moved on while a sidecar worked.

Two views of the same problem:

  - conversation drift: minutes since the sidecar started and the number of
    user turns the parent conversation gained since then, rendered as the
    "Context Age" line shown next to a summary
  - file drift: files a session read that were modified after its last
    activity, rendered as a notice appended to a resumed session's prompt
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import structlog
from pydantic import BaseModel

from sidecar.context.transcript import ConversationMessage, parse_timestamp, read_conversation

logger = structlog.get_logger(__name__)

SIGNIFICANT_AGE_MINUTES = 10
SIGNIFICANT_TURNS = 5


class ContextDrift(BaseModel):
    age_minutes: int
    main_turns: int

    @property
    def is_significant(self) -> bool:
        return self.age_minutes > SIGNIFICANT_AGE_MINUTES or self.main_turns > SIGNIFICANT_TURNS


def count_turns_since(messages: Iterable[ConversationMessage], since: datetime) -> int:
    """User messages strictly after *since*. Messages without a timestamp don't count."""
    return sum(1 for m in messages if m.type == "user" and m.timestamp is not None and m.timestamp > since)


def calculate_drift(
    started_at: datetime,
    conversation_log: Optional[Path],
    now: Optional[datetime] = None,
) -> ContextDrift:
    """Drift of a sidecar started at *started_at* against the parent's log.

    A missing or unreadable log counts as zero new turns.
    """
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    age_minutes = round((now - started_at).total_seconds() / 60)

    turns = 0
    if conversation_log is not None:
        try:
            turns = count_turns_since(read_conversation(conversation_log), started_at)
        except OSError as e:
            logger.debug("drift.log_unreadable", path=str(conversation_log), error=str(e))

    return ContextDrift(age_minutes=max(0, age_minutes), main_turns=turns)


def format_drift_warning(drift: Optional[ContextDrift]) -> str:
    if drift is None:
        return ""
    lines = [
        f"\U0001F4CD **Context Age:** {drift.age_minutes} minutes "
        f"({drift.main_turns} conversation turns in main session)"
    ]
    if drift.is_significant:
        lines.append("")
        lines.append(
            "⚠️ **Drift Warning:** Main session has continued significantly since this "
            "sidecar started. Verify recommendations against current project state."
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# File drift (resume)
# ---------------------------------------------------------------------------


class FileDrift(BaseModel):
    changed_files: list[str] = []
    last_activity: Optional[datetime] = None

    @property
    def has_changes(self) -> bool:
        return bool(self.changed_files)


def check_file_drift(metadata: dict[str, Any], project: str | Path) -> FileDrift:
    """Files listed in ``filesRead`` whose mtime is newer than the last activity.

    The last activity is ``completedAt``, or ``createdAt`` for a session that
    never finished. Files that no longer exist are ignored.
    """
    last_activity = parse_timestamp(metadata.get("completedAt") or metadata.get("createdAt"))
    if last_activity is None:
        return FileDrift()

    changed: list[str] = []
    cutoff = last_activity.timestamp()
    for name in metadata.get("filesRead") or []:
        path = Path(project) / str(name)
        try:
            if path.stat().st_mtime > cutoff:
                changed.append(str(name))
        except OSError:
            continue
    return FileDrift(changed_files=changed, last_activity=last_activity)


def resume_notice(drift: FileDrift, clock: Callable[[], float] = time.time) -> str:
    """Notice appended to a resumed session's system prompt."""
    hours = 0
    if drift.last_activity is not None:
        hours = int((clock() - drift.last_activity.timestamp()) // 3600)
    elapsed = f"{hours} hours" if hours > 0 else "Less than an hour"
    changed = "\n".join(f"- {name}" for name in drift.changed_files)
    return (
        "\n## ⚠️ RESUME NOTICE\n\n"
        "This session is being resumed after a pause. "
        "**The file system has changed since your last message.**\n\n"
        f"**Time since last activity:** {elapsed}\n\n"
        f"**Changed files:**\n{changed}\n\n"
        "Please verify your previous findings against the current state of these files before continuing.\n"
    )
