"""
Session Resolver — which conversation log should a new task read from?

Primary strategy is an explicit session id. Without one (or when it is
missing on disk) the most recently modified log wins, with a warning when the
choice was not obvious: either the requested id was missing or several logs
were active within the last few minutes. Ids that could point outside the
log directory are treated as missing.
"""

from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Callable, Literal, Optional

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

CURRENT_SESSION = "current"
LOG_SUFFIX = ".jsonl"
AMBIGUITY_WINDOW_SECONDS = 5 * 60
_SAFE_SESSION_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

ResolutionMethod = Literal["explicit", "fallback", "error"]


class SessionResolution(BaseModel):
    path: Optional[Path] = None
    method: ResolutionMethod
    warning: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.path is not None


def encode_project_path(project_path: str | Path) -> str:
    """Encode a project path the way conversation directories are named.

    ``/Users/john/my_project`` → ``-Users-john-my-project``
    """
    text = str(project_path)
    for ch in ("/", "\\", "_"):
        text = text.replace(ch, "-")
    return text


def session_directory(project_path: str | Path, home: Optional[Path] = None) -> Path:
    """Directory holding the conversation logs for *project_path*."""
    base = home if home is not None else Path.home()
    return base / ".claude" / "projects" / encode_project_path(project_path)


def is_safe_session_id(value: str) -> bool:
    """True for ids that name a file inside the log directory and nothing else."""
    return bool(_SAFE_SESSION_ID.fullmatch(value)) and ".." not in value


def session_id_from_filename(filename: str) -> str:
    return filename[: -len(LOG_SUFFIX)] if filename.endswith(LOG_SUFFIX) else filename


class SessionResolver:
    """Resolves a conversation log path from a directory and optional id."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time

    def resolve(self, session_dir: str | Path, requested_id: Optional[str] = None) -> SessionResolution:
        session_dir = Path(session_dir)
        if not session_dir.is_dir():
            logger.debug("session_resolver.missing_dir", path=str(session_dir))
            return SessionResolution(path=None, method="error")

        if requested_id and requested_id != CURRENT_SESSION:
            if is_safe_session_id(requested_id):
                filename = requested_id if requested_id.endswith(LOG_SUFFIX) else f"{requested_id}{LOG_SUFFIX}"
                candidate = session_dir / filename
                if candidate.is_file():
                    return SessionResolution(path=candidate, method="explicit")
            else:
                logger.warning("session_resolver.unsafe_id", requested=requested_id)

            fallback = self._most_recent(session_dir)
            if fallback.path is not None:
                logger.warning("session_resolver.explicit_missing", requested=requested_id)
                return SessionResolution(
                    path=fallback.path,
                    method="fallback",
                    warning=(
                        f"Session {requested_id} not found, falling back to most recent. "
                        "For reliability, pass --session <id> explicitly."
                    ),
                )
            return SessionResolution(
                path=None,
                method="error",
                warning=f"Session {requested_id} not found and no fallback available.",
            )

        return self._most_recent(session_dir)

    def _most_recent(self, session_dir: Path) -> SessionResolution:
        logs: list[tuple[float, Path]] = []
        try:
            entries = list(session_dir.iterdir())
        except OSError as e:
            logger.warning("session_resolver.list_failed", path=str(session_dir), error=str(e))
            return SessionResolution(path=None, method="error")

        for entry in entries:
            if not entry.name.endswith(LOG_SUFFIX):
                continue
            try:
                if not entry.is_file():
                    continue
                logs.append((entry.stat().st_mtime, entry))
            except OSError:
                continue

        if not logs:
            return SessionResolution(path=None, method="fallback")

        logs.sort(key=lambda item: item[0], reverse=True)
        cutoff = self._clock() - AMBIGUITY_WINDOW_SECONDS
        recent = [p for mtime, p in logs if mtime > cutoff]
        newest = logs[0][1]

        if len(recent) > 1:
            return SessionResolution(
                path=newest,
                method="fallback",
                warning=(
                    f"{len(recent)} active sessions detected. Using most recent. "
                    "For reliability, pass --session <id> explicitly."
                ),
            )
        return SessionResolution(path=newest, method="fallback")
