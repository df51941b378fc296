"""
Sidecar Session Store — persistent record of headless runs and their subagents.

Layout under the project directory:

    .claude/sidecar_sessions/<task_id>/
        metadata.json         task id, model, agentType, status, briefing, ...
        conversation.jsonl    one {role, content, timestamp} object per line
        initial_context.md    the system prompt and task the run started with
        summary.md            the folded summary, once there is one
        subagents/<id>/
            metadata.json
            conversation.jsonl
            summary.md

Metadata keys are camelCase so sessions written by other sidecar clients
read the same.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import structlog

from sidecar.orchestration.models import SessionStatus

logger = structlog.get_logger(__name__)

SESSIONS_SUBDIR = Path(".claude") / "sidecar_sessions"
_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_SYSTEM_HEADING = "# System Prompt\n\n"
_TASK_HEADING = "\n\n# User Message (Task)\n\n"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _local_time(timestamp: Optional[str]) -> str:
    if not timestamp:
        return "?"
    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).astimezone().strftime("%H:%M:%S")
    except ValueError:
        return timestamp


def render_conversation(messages: list[dict[str, Any]]) -> str:
    """Recorded messages as ``[role @ time] content`` blocks separated by blank lines."""
    return "\n\n".join(
        f"[{m.get('role', '?')} @ {_local_time(m.get('timestamp'))}] {m.get('content', '')}" for m in messages
    )


class SessionNotFoundError(FileNotFoundError):
    """Raised when a session or subagent directory does not exist."""


class SidecarSessionStore:
    """
    File-backed store for sidecar sessions of one project.

    Every write goes straight to disk; nothing is cached, so several processes
    can share a project directory.
    """

    def __init__(self, project_dir: Path | str) -> None:
        self.project_dir = Path(project_dir)
        self.sessions_dir = self.project_dir / SESSIONS_SUBDIR

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def session_dir(self, task_id: str) -> Path:
        return self.sessions_dir / self._checked_id(task_id)

    def subagent_dir(self, task_id: str, subagent_id: str) -> Path:
        return self.session_dir(task_id) / "subagents" / self._checked_id(subagent_id)

    @staticmethod
    def _checked_id(value: str) -> str:
        # Ids become directory names; refuse anything that could escape.
        if not value or not _SAFE_ID.fullmatch(value):
            raise ValueError(f"Invalid id: {value!r}")
        return value

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(
        self,
        task_id: str,
        model: str,
        briefing: str = "",
        agent_type: str = "Build",
        mode: str = "headless",
        thinking: str = "medium",
        project: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create the session directory. Raises FileExistsError if it exists."""
        path = self.session_dir(task_id)
        if path.exists():
            raise FileExistsError(f"Session {task_id} already exists")
        path.mkdir(parents=True)

        metadata: dict[str, Any] = {
            "taskId": task_id,
            "model": model,
            "project": project or str(self.project_dir),
            "briefing": briefing,
            "agentType": agent_type,
            "mode": mode,
            "thinking": thinking,
            "status": SessionStatus.RUNNING.value,
            "createdAt": _now_iso(),
            "completedAt": None,
        }
        self._write_json(path / "metadata.json", metadata)
        (path / "conversation.jsonl").write_text("", encoding="utf-8")
        logger.info("store.session_created", task_id=task_id, model=model)
        return metadata

    def update_session(self, task_id: str, **updates: Any) -> dict[str, Any]:
        meta_path = self.session_dir(task_id) / "metadata.json"
        metadata = self._read_json(meta_path, f"Session {task_id} not found")
        metadata.update(self._normalize(updates))
        self._write_json(meta_path, metadata)
        logger.debug("store.session_updated", task_id=task_id, fields=sorted(updates))
        return metadata

    def get_session(self, task_id: str) -> Optional[dict[str, Any]]:
        meta_path = self.session_dir(task_id) / "metadata.json"
        if not meta_path.exists():
            return None
        return self._read_json(meta_path, f"Session {task_id} not found")

    def finish_session(self, task_id: str, status: SessionStatus | str) -> dict[str, Any]:
        return self.update_session(task_id, status=SessionStatus(status).value, completedAt=_now_iso())

    def append_conversation(
        self,
        task_id: str,
        role: str,
        content: str,
        timestamp: Optional[str] = None,
    ) -> None:
        path = self.session_dir(task_id)
        if not path.exists():
            raise SessionNotFoundError(f"Session {task_id} not found")
        self._append_line(path / "conversation.jsonl", role, content, timestamp)

    def read_conversation(self, task_id: str) -> list[dict[str, Any]]:
        """Recorded messages in order. Malformed lines are skipped."""
        path = self.session_dir(task_id)
        if not path.exists():
            raise SessionNotFoundError(f"Session {task_id} not found")
        conv_path = path / "conversation.jsonl"
        if not conv_path.exists():
            return []

        messages: list[dict[str, Any]] = []
        for line in conv_path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("store.conversation_line_skipped", task_id=task_id)
                continue
            if isinstance(entry, dict):
                messages.append(entry)
        return messages

    def save_summary(
        self,
        task_id: str,
        summary: str,
        status: SessionStatus | str = SessionStatus.COMPLETE,
    ) -> None:
        """Write summary.md and mark the session finished with ``status``."""
        path = self.session_dir(task_id)
        if not path.exists():
            raise SessionNotFoundError(f"Session {task_id} not found")
        (path / "summary.md").write_text(summary, encoding="utf-8")
        self.finish_session(task_id, status)
        logger.info("store.summary_saved", task_id=task_id, chars=len(summary))

    def read_summary(self, task_id: str) -> Optional[str]:
        path = self.session_dir(task_id)
        if not path.exists():
            raise SessionNotFoundError(f"Session {task_id} not found")
        summary_path = path / "summary.md"
        if not summary_path.exists():
            return None
        return summary_path.read_text(encoding="utf-8")

    def save_initial_context(self, task_id: str, system_prompt: str, user_message: str) -> None:
        path = self.session_dir(task_id)
        if not path.exists():
            raise SessionNotFoundError(f"Session {task_id} not found")
        content = f"{_SYSTEM_HEADING}{system_prompt}{_TASK_HEADING}{user_message}"
        (path / "initial_context.md").write_text(content, encoding="utf-8")

    def read_initial_context(self, task_id: str) -> Optional[str]:
        """The system prompt a session started with, or None if never saved."""
        path = self.session_dir(task_id)
        if not path.exists():
            raise SessionNotFoundError(f"Session {task_id} not found")
        context_path = path / "initial_context.md"
        if not context_path.exists():
            return None
        text = context_path.read_text(encoding="utf-8")
        text = text.removeprefix(_SYSTEM_HEADING)
        return text.split(_TASK_HEADING, 1)[0]

    def list_sessions(self, status: Optional[str] = None) -> list[dict[str, Any]]:
        """Sessions newest first, optionally filtered by status (``all`` = no filter)."""
        if not self.sessions_dir.is_dir():
            return []

        sessions: list[dict[str, Any]] = []
        for child in self.sessions_dir.iterdir():
            meta_path = child / "metadata.json"
            if not meta_path.is_file():
                continue
            try:
                metadata = json.loads(meta_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("store.list_read_error", file=str(meta_path), error=str(e))
                continue
            metadata["id"] = child.name
            sessions.append(metadata)

        if status and status != "all":
            sessions = [s for s in sessions if s.get("status") == status]
        sessions.sort(key=lambda s: s.get("createdAt") or "", reverse=True)
        return sessions

    # ------------------------------------------------------------------
    # Subagents
    # ------------------------------------------------------------------

    def create_subagent(
        self,
        task_id: str,
        subagent_id: str,
        agent_type: str,
        briefing: str,
        model: Optional[str] = None,
        status: str = "running",
    ) -> dict[str, Any]:
        path = self.subagent_dir(task_id, subagent_id)
        path.mkdir(parents=True, exist_ok=True)
        metadata: dict[str, Any] = {
            "subagentId": subagent_id,
            "parentTaskId": task_id,
            "agentType": agent_type,
            "briefing": briefing,
            "model": model,
            "status": status,
            "createdAt": _now_iso(),
            "completedAt": None,
        }
        self._write_json(path / "metadata.json", metadata)
        conv_path = path / "conversation.jsonl"
        if not conv_path.exists():
            conv_path.write_text("", encoding="utf-8")
        logger.debug("store.subagent_created", task_id=task_id, subagent_id=subagent_id)
        return metadata

    def update_subagent(self, task_id: str, subagent_id: str, **updates: Any) -> dict[str, Any]:
        meta_path = self.subagent_dir(task_id, subagent_id) / "metadata.json"
        metadata = self._read_json(meta_path, f"Sub-agent {subagent_id} not found")
        metadata.update(self._normalize(updates))
        self._write_json(meta_path, metadata)
        return metadata

    def get_subagent(self, task_id: str, subagent_id: str) -> Optional[dict[str, Any]]:
        meta_path = self.subagent_dir(task_id, subagent_id) / "metadata.json"
        if not meta_path.exists():
            return None
        return self._read_json(meta_path, f"Sub-agent {subagent_id} not found")

    def save_subagent_summary(self, task_id: str, subagent_id: str, summary: str) -> None:
        path = self.subagent_dir(task_id, subagent_id)
        if not path.exists():
            raise SessionNotFoundError(f"Sub-agent {subagent_id} not found")
        (path / "summary.md").write_text(summary, encoding="utf-8")

    def list_subagents(
        self,
        task_id: str,
        status: Optional[str] = None,
        agent_type: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        root = self.session_dir(task_id) / "subagents"
        if not root.is_dir():
            return []

        subagents = []
        for child in sorted(root.iterdir()):
            if not child.is_dir():
                continue
            metadata = self.get_subagent(task_id, child.name)
            if metadata is not None:
                subagents.append(metadata)

        if status:
            subagents = [s for s in subagents if s.get("status") == status]
        if agent_type:
            subagents = [s for s in subagents if s.get("agentType") == agent_type]
        return subagents

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize(updates: dict[str, Any]) -> dict[str, Any]:
        out = {}
        for key, value in updates.items():
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            out[key] = value
        return out

    @staticmethod
    def _append_line(path: Path, role: str, content: str, timestamp: Optional[str]) -> None:
        entry = {"role": role, "content": content, "timestamp": timestamp or _now_iso()}
        with path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(entry, ensure_ascii=False) + "\n")

    @staticmethod
    def _read_json(path: Path, missing_message: str) -> dict[str, Any]:
        if not path.exists():
            raise SessionNotFoundError(missing_message)
        return json.loads(path.read_text(encoding="utf-8"))

    @staticmethod
    def _write_json(path: Path, payload: dict[str, Any]) -> None:
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
