"""Tests for sidecar.events — EventSource listeners and typed event definitions."""

from __future__ import annotations

from sidecar.events import (
    EventSource,
    HeadlessAbortedEvent,
    HeadlessCompletedEvent,
    HeadlessStartedEvent,
    SidecarEvent,
    SubagentCompletedEvent,
    SubagentFailedEvent,
    SubagentFoldEvent,
    SubagentQueueProcessedEvent,
    SubagentSpawnedEvent,
)


def _spawned(n: int = 1) -> SubagentSpawnedEvent:
    return SubagentSpawnedEvent(subagent_id=f"sub-{n}", agent_type="Explore", model="m")


# ---------------------------------------------------------------------------
# SidecarEvent auto-derivation
# ---------------------------------------------------------------------------


class TestEventType:
    """Tests for automatic event_type derivation from class names."""

    def test_subagent_events(self) -> None:
        assert _spawned().event_type == "subagent.spawned"
        assert SubagentCompletedEvent(subagent_id="s", agent_type="General").event_type == "subagent.completed"
        assert SubagentFailedEvent(subagent_id="s", agent_type="General").event_type == "subagent.failed"
        assert SubagentQueueProcessedEvent(subagent_id="s").event_type == "subagent.queue.processed"

    def test_fold_event(self) -> None:
        event = SubagentFoldEvent(
            subagent_id="s", agent_type="Explore", briefing="b", model="m", summary="done"
        )
        assert event.event_type == "subagent.fold"

    def test_headless_events(self) -> None:
        assert HeadlessStartedEvent(task_id="t", session_id="s", model="m").event_type == "headless.started"
        completed = HeadlessCompletedEvent(task_id="t", completed=True, timed_out=False)
        assert completed.event_type == "headless.completed"
        assert HeadlessAbortedEvent(task_id="t").event_type == "headless.aborted"

    def test_explicit_event_type_preserved(self) -> None:
        assert SidecarEvent(event_type="custom.type").event_type == "custom.type"

    def test_base_event_auto_derive(self) -> None:
        assert SidecarEvent().event_type == "sidecar"

    def test_acronym_class_name(self) -> None:
        class MCPServerReadyEvent(SidecarEvent):
            pass

        assert MCPServerReadyEvent().event_type == "mcp.server.ready"

    def test_serialization(self) -> None:
        data = _spawned().model_dump()
        assert data["event_type"] == "subagent.spawned"
        assert data["subagent_id"] == "sub-1"
        assert data["model_was_routed"] is False


# ---------------------------------------------------------------------------
# EventSource
# ---------------------------------------------------------------------------


class _Source(EventSource):
    def publish(self, event: SidecarEvent) -> None:
        self._notify(event)


class TestEventSource:
    def test_listeners_called_in_order(self) -> None:
        source = _Source()
        order: list[str] = []
        source.add_listener(lambda e: order.append(f"a:{e.event_type}"))
        source.add_listener(lambda e: order.append(f"b:{e.event_type}"))

        source.publish(_spawned())
        source.publish(HeadlessAbortedEvent(task_id="t"))

        assert order == [
            "a:subagent.spawned",
            "b:subagent.spawned",
            "a:headless.aborted",
            "b:headless.aborted",
        ]

    def test_remove_listener(self) -> None:
        source = _Source()
        received: list[SidecarEvent] = []
        source.add_listener(received.append)
        assert source.listener_count == 1

        source.remove_listener(received.append)
        source.remove_listener(received.append)
        source.publish(_spawned())

        assert source.listener_count == 0
        assert received == []

    def test_listener_exception_isolated(self) -> None:
        source = _Source()
        received: list[SidecarEvent] = []

        def bad(event: SidecarEvent) -> None:
            raise ValueError("listener error")

        source.add_listener(bad)
        source.add_listener(received.append)
        source.publish(_spawned())

        assert len(received) == 1

    def test_listener_may_unsubscribe_itself(self) -> None:
        source = _Source()
        seen: list[str] = []

        def once(event: SidecarEvent) -> None:
            seen.append(event.event_type)
            source.remove_listener(once)

        source.add_listener(once)
        source.publish(_spawned(1))
        source.publish(_spawned(2))

        assert seen == ["subagent.spawned"]
