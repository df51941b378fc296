"""
Subagent Scheduler — bounded concurrency for delegated work.

Manages the lifecycle of subagent tasks: validating and spawning them against
the agent runtime, queueing whatever exceeds the concurrency limit, and
reporting completion back to whoever spawned them ("folding").

Key properties:
  - At most ``max_concurrent`` tasks are ``running`` at any observable point.
    The capacity check and the increment happen in one synchronous step, so
    no other coroutine can interleave between them; no lock is needed.
  - The queue is strict FIFO and is drained by a single routine,
    ``_dispatch_next``, after every terminal transition.
  - The scheduler never polls. Completion and failure are reported by the
    caller through ``mark_completed`` / ``mark_failed``.
  - There is no per-task timeout: a hung subagent holds its slot until
    someone marks it failed.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from sidecar.agent_types import AgentRole, get_subagent_role, list_subagent_types, normalize_subagent
from sidecar.events import (
    EventSource,
    SubagentCompletedEvent,
    SubagentFailedEvent,
    SubagentFoldEvent,
    SubagentQueueProcessedEvent,
    SubagentSpawnedEvent,
)
from sidecar.orchestration.models import SubagentRequest, SubagentStatus, SubagentTask
from sidecar.prompts import build_subagent_prompt
from sidecar.routing import ModelRouter
from sidecar.runtime.base import AgentRuntime, PromptRequest, RuntimeMessage

logger = structlog.get_logger(__name__)

SummaryFormatter = Callable[[SubagentTask], str]


class SubagentValidationError(ValueError):
    """Raised synchronously for a request that can never be dispatched."""


class SubagentNotFoundError(LookupError):
    """Raised when a subagent id is unknown to this scheduler."""


def short_model_name(model: Optional[str]) -> str:
    """``openrouter/google/gemini-3-flash-preview`` → ``gemini-3-flash``."""
    if not model:
        return "unknown"
    name = model.split("/")[-1]
    for suffix in ("-preview", "-latest"):
        name = name.removesuffix(suffix)
    return name


def format_fold_summary(task: SubagentTask) -> str:
    """Default fold summary: a header naming the subagent, then its result."""
    model_info = f" (using {short_model_name(task.model)})" if task.model_was_routed else ""
    return f'[{task.agent_type} sub-agent{model_info}: "{task.briefing}"]\n\n{task.result or "No result"}'


@dataclass
class _QueuedRequest:
    task: SubagentTask
    role: AgentRole
    request: SubagentRequest
    future: asyncio.Future[SubagentTask]


class SubagentScheduler(EventSource):
    """Owns subagent state; every mutation goes through its methods."""

    def __init__(
        self,
        runtime: AgentRuntime,
        router: ModelRouter,
        config: Any,  # SchedulerConfig
        parent_model: str,
        parent_session_id: Optional[str] = None,
        parent_task_id: Optional[str] = None,
        summary_formatter: Optional[SummaryFormatter] = None,
    ) -> None:
        super().__init__()
        self._runtime = runtime
        self._router = router
        self._max_concurrent = max(1, int(config.max_concurrent))
        self._parent_model = parent_model
        self._parent_session_id = parent_session_id
        self._parent_task_id = parent_task_id
        self._format_summary = summary_formatter or format_fold_summary

        self._tasks: dict[str, SubagentTask] = {}
        self._queue: deque[_QueuedRequest] = deque()
        self._active_count = 0
        # Launches started from the queue; kept so they are not garbage collected.
        self._background: set[asyncio.Task[None]] = set()

        logger.info(
            "scheduler.initialized",
            max_concurrent=self._max_concurrent,
            parent_model=parent_model,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def active_count(self) -> int:
        return self._active_count

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, request: SubagentRequest) -> SubagentTask:
        """Spawn a subagent, or wait in the FIFO queue until a slot frees.

        Raises SubagentValidationError before any external call for a bad
        agent type or an empty briefing. If dispatch itself fails the task is
        marked failed and the exception propagates.
        """
        role = self._validate(request)
        task = self._new_task(request, role)
        self._tasks[task.id] = task

        if self._active_count < self._max_concurrent:
            self._activate(task)
            return await self._launch(task, role, request)

        future: asyncio.Future[SubagentTask] = asyncio.get_running_loop().create_future()
        self._queue.append(_QueuedRequest(task=task, role=role, request=request, future=future))
        logger.info(
            "scheduler.queued",
            subagent_id=task.id,
            agent_type=task.agent_type,
            queue_length=len(self._queue),
        )
        return await future

    def _validate(self, request: SubagentRequest) -> AgentRole:
        role = get_subagent_role(request.agent_type)
        if role is None:
            raise SubagentValidationError(
                f"Invalid agent type: {request.agent_type}. "
                f"Must be one of: {', '.join(list_subagent_types())}."
            )
        if not isinstance(request.briefing, str) or not request.briefing.strip():
            raise SubagentValidationError("Briefing is required")
        return role

    def _new_task(self, request: SubagentRequest, role: AgentRole) -> SubagentTask:
        resolution = self._router.resolve(
            role.name,
            explicit_model=request.model,
            parent_model=self._parent_model,
            is_subagent=True,
        )
        return SubagentTask(
            agent_type=role.name,
            briefing=request.briefing,
            model=resolution.model,
            model_was_routed=resolution.was_routed,
            parent_task_id=self._parent_task_id,
        )

    def _activate(self, task: SubagentTask) -> None:
        """pending → running. Must not suspend between caller's check and here."""
        task.status = SubagentStatus.RUNNING
        self._active_count += 1

    async def _launch(self, task: SubagentTask, role: AgentRole, request: SubagentRequest) -> SubagentTask:
        try:
            session_id = await self._runtime.create_session(self._parent_session_id)
            task.external_session_id = session_id
            await self._runtime.send_prompt(
                session_id,
                PromptRequest(
                    model=task.model,
                    system=build_subagent_prompt(role),
                    briefing_text=task.briefing,
                    agent_role=role.name,
                    reasoning_effort=request.reasoning_effort,
                ),
            )
        except (Exception, asyncio.CancelledError) as exc:
            logger.warning("scheduler.dispatch_failed", subagent_id=task.id, error=str(exc))
            self.mark_failed(task.id, exc)
            raise

        logger.info(
            "scheduler.spawned",
            subagent_id=task.id,
            agent_type=task.agent_type,
            model=task.model,
            routed=task.model_was_routed,
        )
        self._notify(
            SubagentSpawnedEvent(
                subagent_id=task.id,
                agent_type=task.agent_type,
                model=task.model,
                model_was_routed=task.model_was_routed,
                session_id=task.external_session_id,
            )
        )
        return task.model_copy()

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def mark_completed(self, subagent_id: str, result: str) -> bool:
        """Record a successful result. Returns False for unknown or finished tasks."""
        task = self._finish(subagent_id, SubagentStatus.COMPLETED)
        if task is None:
            return False
        task.result = result
        self._release_queued(task)

        logger.info("scheduler.completed", subagent_id=task.id, active=self._active_count)
        self._notify(SubagentCompletedEvent(subagent_id=task.id, agent_type=task.agent_type, result=result))
        self._fold(task)
        self._dispatch_next()
        return True

    def mark_failed(self, subagent_id: str, error: BaseException | str) -> bool:
        """Record a failure. Returns False for unknown or finished tasks."""
        task = self._finish(subagent_id, SubagentStatus.FAILED)
        if task is None:
            return False
        task.error = str(error) or type(error).__name__
        self._release_queued(task)

        logger.info("scheduler.failed", subagent_id=task.id, error=task.error, active=self._active_count)
        self._notify(SubagentFailedEvent(subagent_id=task.id, agent_type=task.agent_type, error=task.error))
        self._dispatch_next()
        return True

    def _finish(self, subagent_id: str, status: SubagentStatus) -> Optional[SubagentTask]:
        task = self._tasks.get(subagent_id)
        if task is None:
            logger.warning("scheduler.unknown_subagent", subagent_id=subagent_id, status=status.value)
            return None
        if task.terminal:
            logger.debug("scheduler.already_terminal", subagent_id=subagent_id, status=task.status.value)
            return None

        was_running = task.status is SubagentStatus.RUNNING
        task.status = status
        task.completed_at = datetime.now(timezone.utc)
        if was_running:
            self._active_count = max(0, self._active_count - 1)
        return task

    def _release_queued(self, task: SubagentTask) -> None:
        """Drop the queue entry of a task that finished before dispatch."""
        queued = next((q for q in self._queue if q.task is task), None)
        if queued is None:
            return
        self._queue.remove(queued)
        logger.debug("scheduler.dequeued", subagent_id=task.id, status=task.status.value)
        if queued.future.done():
            return
        if task.status is SubagentStatus.COMPLETED:
            queued.future.set_result(task.model_copy())
        else:
            queued.future.set_exception(
                RuntimeError(f"Subagent {task.id} failed before dispatch: {task.error}")
            )

    def _fold(self, task: SubagentTask) -> None:
        try:
            summary = self._format_summary(task.model_copy())
        except Exception:
            logger.error("scheduler.fold_format_failed", subagent_id=task.id, exc_info=True)
            summary = format_fold_summary(task)
        self._notify(
            SubagentFoldEvent(
                subagent_id=task.id,
                agent_type=task.agent_type,
                briefing=task.briefing,
                model=task.model,
                model_was_routed=task.model_was_routed,
                summary=summary,
            )
        )

    def _dispatch_next(self) -> None:
        """Start queued requests while capacity allows.

        Idempotent: with no capacity or an empty queue it does nothing.
        Entries whose submitter gave up, or whose task was failed while still
        queued, are discarded.
        """
        while self._queue and self._active_count < self._max_concurrent:
            queued = self._queue.popleft()
            task = queued.task
            if queued.future.done() or task.terminal:
                if not queued.future.done():
                    queued.future.set_exception(
                        RuntimeError(f"Subagent {task.id} was {task.status.value} before dispatch")
                    )
                if not task.terminal:
                    self.mark_failed(task.id, "Submission cancelled before dispatch")
                continue

            self._activate(task)
            launch = asyncio.get_running_loop().create_task(self._launch_queued(queued))
            self._background.add(launch)
            launch.add_done_callback(self._background.discard)

    async def _launch_queued(self, queued: _QueuedRequest) -> None:
        try:
            task = await self._launch(queued.task, queued.role, queued.request)
        except Exception as exc:
            if not queued.future.done():
                queued.future.set_exception(exc)
            return
        self._notify(SubagentQueueProcessedEvent(subagent_id=task.id))
        if not queued.future.done():
            queued.future.set_result(task)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def get_task(self, subagent_id: str) -> Optional[SubagentTask]:
        task = self._tasks.get(subagent_id)
        return task.model_copy() if task else None

    def list_tasks(
        self,
        status: Optional[SubagentStatus | str] = None,
        agent_type: Optional[str] = None,
    ) -> list[SubagentTask]:
        """All tasks in creation order, optionally filtered by status and/or role."""
        tasks = list(self._tasks.values())
        if status is not None:
            wanted = SubagentStatus(status)
            tasks = [t for t in tasks if t.status is wanted]
        if agent_type is not None:
            role = normalize_subagent(agent_type) or agent_type
            tasks = [t for t in tasks if t.agent_type == role]
        return [t.model_copy() for t in tasks]

    async def read_results(self, subagent_id: str) -> list[RuntimeMessage]:
        """Fetch the transcript of a running or finished subagent."""
        task = self._tasks.get(subagent_id)
        if task is None:
            raise SubagentNotFoundError(f"Subagent not found: {subagent_id}")
        if not task.external_session_id:
            return []
        return await self._runtime.get_messages(task.external_session_id)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Reject queued submissions, wait briefly for in-flight launches, reset."""
        logger.info(
            "scheduler.shutting_down",
            active=self._active_count,
            queued=len(self._queue),
        )
        while self._queue:
            queued = self._queue.popleft()
            if not queued.future.done():
                queued.future.cancel()

        if self._background:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._background, return_exceptions=True),
                    timeout=10.0,
                )
            except asyncio.TimeoutError:
                logger.warning("scheduler.shutdown_timeout", remaining=len(self._background))

        self._tasks.clear()
        self._active_count = 0
        self._listeners.clear()
        logger.info("scheduler.shutdown_complete")

