"""
Completion Poller — headless execution of a single task.

The runtime is told (via the system prompt) to finish its answer with
``COMPLETE_MARKER``. The poller sends the initial prompt, then polls session
status until the marker shows up in the accumulated output or the deadline
passes. On timeout it asks once more for a wrap-up, waits a grace period and
takes whatever text it has: a timeout is a lower-confidence completion, never
an exception.

Failure handling:
  - a failing status endpoint falls back to fetching messages directly;
    and if that fails too the round is skipped
  - an unhealthy runtime or a rejected session yields ``error`` in the result
  - any other exception mid-run also yields ``error``; nothing propagates
  - ``run_with_launcher`` releases the runtime server on every exit path
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

import structlog

from sidecar.events import EventSource, HeadlessAbortedEvent, HeadlessCompletedEvent, HeadlessStartedEvent
from sidecar.orchestration.models import HeadlessResult
from sidecar.prompts import COMPLETE_MARKER, extract_summary, wrap_up_prompt
from sidecar.runtime.base import AgentRuntime, PromptRequest, RuntimeLauncher

logger = structlog.get_logger(__name__)

TranscriptSink = Callable[[str], None]


class _Output:
    """Accumulated assistant text, deduplicated by part."""

    def __init__(self, sink: Optional[TranscriptSink] = None) -> None:
        self._parts: list[str] = []
        self._seen: set[str] = set()
        self._sink = sink

    def add(self, text: str) -> bool:
        if not text or text in self._seen:
            return False
        self._seen.add(text)
        self._parts.append(text)
        if self._sink is not None:
            try:
                self._sink(text)
            except Exception:
                logger.warning("poller.transcript_write_failed", exc_info=True)
        return True

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def has_marker(self) -> bool:
        return COMPLETE_MARKER in self.text


class CompletionPoller(EventSource):
    """Drives exactly one task to its completion marker."""

    def __init__(
        self,
        runtime: Optional[AgentRuntime],
        config: Any,  # HeadlessConfig
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self._runtime = runtime
        self._config = config
        self._sleep = sleep
        self._clock = clock
        self._drive_task: Optional[asyncio.Task[HeadlessResult]] = None
        self._aborted = False
        self._output = _Output()

    # ------------------------------------------------------------------
    # Abort handle
    # ------------------------------------------------------------------

    def abort(self) -> bool:
        """Abort the in-flight run. Returns False if nothing is running."""
        if self._drive_task is None or self._drive_task.done():
            return False
        self._aborted = True
        self._drive_task.cancel()
        return True

    @property
    def aborted(self) -> bool:
        return self._aborted

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_with_launcher(
        self,
        launcher: RuntimeLauncher,
        task_id: str,
        options: Optional[dict[str, Any]] = None,
        **run_kwargs: Any,
    ) -> HeadlessResult:
        """Start a runtime, run the task on it, and always stop the runtime."""
        try:
            handle = await launcher.start(options)
        except Exception as exc:
            logger.error("poller.runtime_start_failed", task_id=task_id, error=str(exc))
            return HeadlessResult(task_id=task_id, error=f"Failed to start runtime: {exc}")

        async with handle:
            self._runtime = handle.runtime
            logger.debug("poller.runtime_started", task_id=task_id, url=handle.url)
            return await self.run(task_id, **run_kwargs)

    async def run(
        self,
        task_id: str,
        model: str,
        system_prompt: Optional[str],
        briefing: str,
        agent_role: Optional[str] = None,
        reasoning_effort: Optional[str] = None,
        summary_length: str = "normal",
        transcript: Optional[TranscriptSink] = None,
    ) -> HeadlessResult:
        if self._runtime is None:
            raise RuntimeError("No agent runtime configured")

        self._aborted = False
        self._output = _Output(transcript)
        request = PromptRequest(
            model=model,
            system=system_prompt,
            briefing_text=briefing,
            agent_role=agent_role,
            reasoning_effort=reasoning_effort,
        )
        self._drive_task = asyncio.ensure_future(self._drive(task_id, request, summary_length))
        try:
            result = await self._drive_task
        except asyncio.CancelledError:
            if not self._aborted:
                raise
            logger.info("poller.aborted", task_id=task_id)
            self._notify(HeadlessAbortedEvent(task_id=task_id))
            result = HeadlessResult(
                task_id=task_id,
                summary=extract_summary(self._output.text),
                error="aborted",
            )
        finally:
            self._drive_task = None

        self._notify(
            HeadlessCompletedEvent(
                task_id=task_id,
                completed=result.completed,
                timed_out=result.timed_out,
                error=result.error,
            )
        )
        return result

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _drive(self, task_id: str, request: PromptRequest, summary_length: str) -> HeadlessResult:
        runtime = self._runtime
        assert runtime is not None
        output = self._output

        if not await self._wait_for_health():
            logger.error("poller.runtime_unhealthy", task_id=task_id)
            return HeadlessResult(task_id=task_id, error="Agent runtime failed to become healthy")

        try:
            session_id = await runtime.create_session()
        except Exception as exc:
            logger.error("poller.session_create_failed", task_id=task_id, error=str(exc))
            return HeadlessResult(task_id=task_id, error=str(exc) or type(exc).__name__)

        try:
            response = await runtime.send_prompt(session_id, request)
            for part in response.text_parts:
                output.add(part)
            self._notify(HeadlessStartedEvent(task_id=task_id, session_id=session_id, model=request.model))

            if output.has_marker:
                logger.info("poller.completed_immediately", task_id=task_id)
                return HeadlessResult(task_id=task_id, summary=extract_summary(output.text), completed=True)

            completed, runtime_error = await self._poll(task_id, session_id)
        except Exception as exc:
            logger.error("poller.failed", task_id=task_id, error=str(exc), exc_info=True)
            return HeadlessResult(task_id=task_id, error=str(exc) or type(exc).__name__)

        if completed:
            return HeadlessResult(task_id=task_id, summary=extract_summary(output.text), completed=True)
        if runtime_error is not None:
            return HeadlessResult(task_id=task_id, summary=extract_summary(output.text), error=runtime_error)

        completed = await self._grace(task_id, session_id, request.model, summary_length)
        return HeadlessResult(
            task_id=task_id,
            summary=extract_summary(output.text),
            completed=completed,
            timed_out=True,
        )

    async def _wait_for_health(self) -> bool:
        assert self._runtime is not None
        for attempt in range(self._config.health_attempts):
            try:
                if await self._runtime.check_health():
                    return True
            except Exception as exc:
                logger.debug("poller.health_check_failed", attempt=attempt, error=str(exc))
            await self._sleep(self._config.health_interval)
        return False

    async def _poll(self, task_id: str, session_id: str) -> tuple[bool, Optional[str]]:
        """Poll until the marker appears or the deadline passes.

        Returns (completed, runtime_error). Timeout is (False, None).
        """
        assert self._runtime is not None
        deadline = self._clock() + self._config.timeout_seconds
        polls = 0

        while self._clock() < deadline:
            await self._sleep(self._config.poll_interval)
            polls += 1
            try:
                status = await self._runtime.get_status(session_id)
            except Exception as exc:
                logger.debug("poller.status_failed_fallback", task_id=task_id, error=str(exc))
                try:
                    await self._collect(session_id)
                except Exception as fetch_exc:
                    logger.warning("poller.message_fetch_failed", task_id=task_id, error=str(fetch_exc))
                    continue
                if self._output.has_marker:
                    return True, None
                continue

            logger.debug("poller.status", task_id=task_id, polls=polls, status=status.status)
            if not status.stopped:
                continue

            await self._collect(session_id)
            if self._output.has_marker:
                logger.info("poller.completed", task_id=task_id, polls=polls)
                return True, None
            if status.status == "error":
                logger.warning("poller.runtime_error", task_id=task_id, error=status.error)
                return False, status.error or "Agent runtime reported an error"
            # Idle without a marker: the agent may still be mid multi-step work.

        logger.warning("poller.deadline_reached", task_id=task_id, polls=polls)
        return False, None

    async def _grace(self, task_id: str, session_id: str, model: str, summary_length: str) -> bool:
        """Ask for a wrap-up, wait the grace period, check once more."""
        assert self._runtime is not None
        try:
            response = await self._runtime.send_prompt(
                session_id,
                PromptRequest(model=model, briefing_text=wrap_up_prompt(summary_length)),
            )
            for part in response.text_parts:
                self._output.add(part)
        except Exception as exc:
            logger.warning("poller.wrap_up_failed", task_id=task_id, error=str(exc))

        await self._sleep(self._config.grace_period)

        try:
            await self._collect(session_id)
        except Exception as exc:
            logger.warning("poller.final_fetch_failed", task_id=task_id, error=str(exc))

        completed = self._output.has_marker
        logger.info("poller.timed_out", task_id=task_id, completed_in_grace=completed)
        return completed

    async def _collect(self, session_id: str) -> None:
        assert self._runtime is not None
        messages = await self._runtime.get_messages(session_id)
        for message in messages:
            if message.role not in ("assistant", ""):
                continue
            for part in message.text_parts:
                self._output.add(part)

