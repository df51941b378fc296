"""
Headless runner — one top-level task from briefing to persisted summary.

    resolve conversation log → read transcript → build context window
    → resolve model → build system prompt → record ``running`` session
    → CompletionPoller on a freshly launched runtime → record outcome

Each step that can fail for environmental reasons (no conversation log, an
unreadable transcript) degrades to running without context instead of
aborting the task.

Two variations reuse a recorded session:

  - ``resume_headless`` runs a session again under its own task id, with the
    system prompt it started with plus a notice listing files that changed
  - ``continue_headless`` starts a new session whose context is an earlier
    session's briefing, summary and conversation
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from sidecar.agent_types import map_primary_agent
from sidecar.config import SidecarConfig
from sidecar.context import ContextWindowBuilder, SessionResolver
from sidecar.context.drift import check_file_drift, resume_notice
from sidecar.context.session import session_directory
from sidecar.context.transcript import read_conversation
from sidecar.events import (
    Listener,
    SidecarEvent,
    SubagentFailedEvent,
    SubagentFoldEvent,
    SubagentSpawnedEvent,
)
from sidecar.orchestration.models import HeadlessResult, SessionStatus
from sidecar.orchestration.poller import CompletionPoller
from sidecar.orchestration.scheduler import SubagentScheduler
from sidecar.prompts import build_continuation_context, build_system_prompt
from sidecar.routing import ModelRouter
from sidecar.runtime.base import RuntimeLauncher
from sidecar.runtime.opencode import OpenCodeLauncher
from sidecar.store import SessionNotFoundError, SidecarSessionStore, render_conversation

logger = structlog.get_logger(__name__)

NO_OUTPUT_SUMMARY = "## Sidecar Results: No Output\n\nHeadless mode completed without summary."
RESUMED_NO_OUTPUT_SUMMARY = "## Sidecar Results: No Output\n\nResumed session completed without summary."
CONTINUED_NO_OUTPUT_SUMMARY = "## Sidecar Results: No Output\n\nContinued session completed without summary."

PollerHook = Callable[[CompletionPoller], None]


def generate_task_id() -> str:
    """Eight hex characters, unique enough per project."""
    return secrets.token_hex(4)


def conversation_log(
    project: str | Path,
    session: Optional[str] = None,
    home: Optional[Path] = None,
) -> Optional[Path]:
    """The parent conversation log for *project*, or None."""
    log_dir = session_directory(project, home=home)
    resolution = SessionResolver().resolve(log_dir, session)
    if resolution.warning:
        logger.warning("runner.session_resolution", warning=resolution.warning)
    if resolution.path is None:
        logger.info("runner.no_conversation_log", directory=str(log_dir), method=resolution.method)
    return resolution.path


def context_from_log(config: SidecarConfig, log: Optional[Path]) -> str:
    if log is None:
        return ""
    try:
        history = read_conversation(log)
    except OSError as e:
        logger.warning("runner.transcript_unreadable", path=str(log), error=str(e))
        return ""

    return ContextWindowBuilder().build(
        history,
        turns=config.context.turns,
        since=config.context.since,
        max_tokens=config.context.max_tokens,
    )


def build_context(
    config: SidecarConfig,
    project: str | Path,
    session: Optional[str] = None,
    home: Optional[Path] = None,
) -> str:
    """Context window text from the project's conversation log, or ""."""
    return context_from_log(config, conversation_log(project, session=session, home=home))


async def run_headless(
    config: SidecarConfig,
    briefing: str,
    project: str | Path,
    model: str,
    session: Optional[str] = None,
    agent: Optional[str] = None,
    summary_length: str = "normal",
    thinking: Optional[str] = None,
    mcp: Optional[dict[str, Any]] = None,
    launcher: Optional[RuntimeLauncher] = None,
    listener: Optional[Listener] = None,
    home: Optional[Path] = None,
    task_id: Optional[str] = None,
    on_poller: Optional[PollerHook] = None,
) -> HeadlessResult:
    """Run *briefing* headlessly against *project* and persist the outcome.

    ``listener`` receives the poller's lifecycle events. ``on_poller``
    receives the poller before it starts, which is how a caller gets hold of
    the abort handle.
    """
    project = str(project)
    task_id = task_id or generate_task_id()
    agent_role = map_primary_agent(agent)
    logger.info("runner.starting", task_id=task_id, model=model, agent=agent_role)

    log = conversation_log(project, session=session, home=home)
    context = context_from_log(config, log)
    # Top-level tasks always run on the model they were given.
    resolution = ModelRouter(config.routing).resolve(agent_role, parent_model=model, is_subagent=False)
    system_prompt = build_system_prompt(context, project, headless=True, summary_length=summary_length)

    store = SidecarSessionStore(project)
    _open_session(
        store,
        task_id,
        model=resolution.model,
        briefing=briefing,
        agent_role=agent_role,
        thinking=thinking,
        project=project,
        system_prompt=system_prompt,
        conversationLog=str(log) if log else None,
    )

    return await _execute(
        config,
        store,
        task_id,
        model=resolution.model,
        system_prompt=system_prompt,
        briefing=briefing,
        agent_role=agent_role,
        summary_length=summary_length,
        thinking=thinking,
        mcp=mcp,
        launcher=launcher,
        listener=listener,
        on_poller=on_poller,
        no_output_summary=NO_OUTPUT_SUMMARY,
    )


async def resume_headless(
    config: SidecarConfig,
    task_id: str,
    project: str | Path,
    summary_length: str = "normal",
    thinking: Optional[str] = None,
    mcp: Optional[dict[str, Any]] = None,
    launcher: Optional[RuntimeLauncher] = None,
    listener: Optional[Listener] = None,
    on_poller: Optional[PollerHook] = None,
) -> HeadlessResult:
    """Run a recorded session again with its original model, briefing and agent.

    Raises SessionNotFoundError for an unknown task id.
    """
    project = str(project)
    store = SidecarSessionStore(project)
    metadata = store.get_session(task_id)
    if metadata is None:
        raise SessionNotFoundError(f"Session {task_id} not found")

    model = metadata.get("model") or ""
    briefing = metadata.get("briefing") or ""
    agent_role = map_primary_agent(metadata.get("agentType"))
    logger.info("runner.resuming", task_id=task_id, model=model, agent=agent_role)

    system_prompt = store.read_initial_context(task_id)
    if system_prompt is None:
        system_prompt = build_system_prompt("", project, headless=True, summary_length=summary_length)

    drift = check_file_drift(metadata, project)
    if drift.has_changes:
        logger.warning("runner.files_changed", task_id=task_id, changed=len(drift.changed_files))
        system_prompt = system_prompt + "\n" + resume_notice(drift)

    updates: dict[str, Any] = {"status": SessionStatus.RUNNING, "resumedAt": datetime.now(timezone.utc)}
    if metadata.get("error"):
        updates["error"] = None
    store.update_session(task_id, **updates)

    return await _execute(
        config,
        store,
        task_id,
        model=model,
        system_prompt=system_prompt,
        briefing=briefing,
        agent_role=agent_role,
        summary_length=summary_length,
        thinking=thinking,
        mcp=mcp,
        launcher=launcher,
        listener=listener,
        on_poller=on_poller,
        no_output_summary=RESUMED_NO_OUTPUT_SUMMARY,
    )


async def continue_headless(
    config: SidecarConfig,
    previous_task_id: str,
    briefing: str,
    project: str | Path,
    model: Optional[str] = None,
    agent: Optional[str] = None,
    summary_length: str = "normal",
    thinking: Optional[str] = None,
    mcp: Optional[dict[str, Any]] = None,
    launcher: Optional[RuntimeLauncher] = None,
    listener: Optional[Listener] = None,
    task_id: Optional[str] = None,
    on_poller: Optional[PollerHook] = None,
) -> HeadlessResult:
    """Start a new session that builds on *previous_task_id*'s findings.

    Model and agent default to the previous session's. Raises
    SessionNotFoundError for an unknown task id.
    """
    project = str(project)
    store = SidecarSessionStore(project)
    previous = store.get_session(previous_task_id)
    if previous is None:
        raise SessionNotFoundError(f"Session {previous_task_id} not found")

    task_id = task_id or generate_task_id()
    model = model or previous.get("model") or ""
    agent_role = map_primary_agent(agent or previous.get("agentType"))
    logger.info("runner.continuing", task_id=task_id, previous=previous_task_id, model=model)

    context = build_continuation_context(
        previous,
        store.read_summary(previous_task_id),
        render_conversation(store.read_conversation(previous_task_id)),
        max_tokens=config.context.max_tokens,
    )
    system_prompt = build_system_prompt(
        f"{context}\n\n{briefing}", project, headless=True, summary_length=summary_length
    )

    _open_session(
        store,
        task_id,
        model=model,
        briefing=briefing,
        agent_role=agent_role,
        thinking=thinking,
        project=project,
        system_prompt=system_prompt,
        continuesFrom=previous_task_id,
    )

    return await _execute(
        config,
        store,
        task_id,
        model=model,
        system_prompt=system_prompt,
        briefing=briefing,
        agent_role=agent_role,
        summary_length=summary_length,
        thinking=thinking,
        mcp=mcp,
        launcher=launcher,
        listener=listener,
        on_poller=on_poller,
        no_output_summary=CONTINUED_NO_OUTPUT_SUMMARY,
    )


def _open_session(
    store: SidecarSessionStore,
    task_id: str,
    model: str,
    briefing: str,
    agent_role: str,
    thinking: Optional[str],
    project: str,
    system_prompt: str,
    **extra: Any,
) -> None:
    store.create_session(
        task_id,
        model=model,
        briefing=briefing,
        agent_type=agent_role,
        mode="headless",
        thinking=thinking or "medium",
        project=project,
    )
    extra = {key: value for key, value in extra.items() if value is not None}
    if extra:
        store.update_session(task_id, **extra)
    store.save_initial_context(task_id, system_prompt, briefing)
    store.append_conversation(task_id, "user", briefing)


async def _execute(
    config: SidecarConfig,
    store: SidecarSessionStore,
    task_id: str,
    model: str,
    system_prompt: str,
    briefing: str,
    agent_role: str,
    summary_length: str,
    thinking: Optional[str],
    mcp: Optional[dict[str, Any]],
    launcher: Optional[RuntimeLauncher],
    listener: Optional[Listener],
    on_poller: Optional[PollerHook],
    no_output_summary: str,
) -> HeadlessResult:
    if launcher is None:
        launcher = OpenCodeLauncher(config.runtime)

    poller = CompletionPoller(None, config.headless)
    if listener is not None:
        poller.add_listener(listener)
    if on_poller is not None:
        on_poller(poller)

    result = await poller.run_with_launcher(
        launcher,
        task_id,
        options={"mcp": mcp, "model": model},
        model=model,
        system_prompt=system_prompt,
        briefing=briefing,
        agent_role=agent_role,
        reasoning_effort=thinking,
        summary_length=summary_length,
        transcript=lambda text: store.append_conversation(task_id, "assistant", text),
    )

    summary = result.summary or no_output_summary
    store.save_summary(task_id, summary, status=result.session_status)
    if result.error:
        store.update_session(task_id, error=result.error)

    logger.info(
        "runner.finished",
        task_id=task_id,
        status=result.session_status.value,
        completed=result.completed,
        timed_out=result.timed_out,
    )
    return result.model_copy(update={"summary": summary})


class SubagentRecorder:
    """Mirrors a scheduler's subagent lifecycle into the session store.

    Register with ``scheduler.add_listener(recorder)``.
    """

    def __init__(self, store: SidecarSessionStore, task_id: str, scheduler: SubagentScheduler) -> None:
        self._store = store
        self._task_id = task_id
        self._scheduler = scheduler

    def __call__(self, event: SidecarEvent) -> None:
        if isinstance(event, SubagentSpawnedEvent):
            task = self._scheduler.get_task(event.subagent_id)
            self._store.create_subagent(
                self._task_id,
                event.subagent_id,
                agent_type=event.agent_type,
                briefing=task.briefing if task else "",
                model=event.model,
            )
            if event.session_id:
                self._store.update_subagent(self._task_id, event.subagent_id, sessionId=event.session_id)
        elif isinstance(event, SubagentFoldEvent):
            task = self._scheduler.get_task(event.subagent_id)
            self._store.save_subagent_summary(self._task_id, event.subagent_id, event.summary)
            self._store.update_subagent(
                self._task_id,
                event.subagent_id,
                status="completed",
                result=task.result if task else None,
                completedAt=task.completed_at if task else None,
            )
        elif isinstance(event, SubagentFailedEvent):
            task = self._scheduler.get_task(event.subagent_id)
            if self._store.get_subagent(self._task_id, event.subagent_id) is None:
                # Failed during dispatch, before a spawned event was emitted.
                self._store.create_subagent(
                    self._task_id,
                    event.subagent_id,
                    agent_type=event.agent_type,
                    briefing=task.briefing if task else "",
                    model=task.model if task else None,
                )
            self._store.update_subagent(
                self._task_id,
                event.subagent_id,
                status="failed",
                error=event.error,
                completedAt=task.completed_at if task else None,
            )
