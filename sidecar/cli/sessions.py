"""Session commands — list and read persisted sidecar sessions."""

from __future__ import annotations

import json as json_mod
import os
from pathlib import Path
from typing import Any, Optional

import click

from sidecar.cli.formatters import build_table, format_age, get_console, shorten, status_indicator
from sidecar.context.drift import ContextDrift, calculate_drift, format_drift_warning
from sidecar.context.transcript import parse_timestamp
from sidecar.store import SidecarSessionStore, render_conversation


def _store(project: Optional[str]) -> SidecarSessionStore:
    return SidecarSessionStore(project or os.getcwd())


@click.command("list")
@click.option(
    "--status",
    type=click.Choice(["all", "running", "complete", "error", "timeout"]),
    default="all",
    show_default=True,
)
@click.option("--project", type=click.Path(file_okay=False), default=None, help="Project directory")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def list_cmd(ctx: click.Context, status: str, project: Optional[str], json_output: bool) -> None:
    """List previous sidecar sessions, newest first."""
    sessions = _store(project).list_sessions(status=status)
    if not sessions:
        click.echo("No sidecar sessions found.")
        return

    if json_output:
        click.echo(json_mod.dumps(sessions, indent=2))
        return

    rows = [
        [
            s.get("id", ""),
            s.get("model") or "",
            status_indicator(s.get("status") or "unknown"),
            format_age(s.get("createdAt")),
            shorten(s.get("briefing")),
        ]
        for s in sessions
    ]
    no_color = bool((ctx.obj or {}).get("no_color"))
    get_console(no_color).print(
        build_table("Sidecar Sessions", ["ID", "MODEL", "STATUS", "AGE", "BRIEFING"], rows)
    )


@click.command("read")
@click.argument("task_id")
@click.option("--conversation", is_flag=True, help="Show the recorded conversation")
@click.option("--metadata", is_flag=True, help="Show the session metadata")
@click.option("--project", type=click.Path(file_okay=False), default=None, help="Project directory")
def read_cmd(task_id: str, conversation: bool, metadata: bool, project: Optional[str]) -> None:
    """Show a session's summary (default), conversation or metadata."""
    store = _store(project)
    try:
        meta = store.get_session(task_id)
    except ValueError:
        meta = None
    if meta is None:
        raise click.ClickException(f"Session {task_id} not found")

    if conversation:
        messages = store.read_conversation(task_id)
        if not messages:
            click.echo("No conversation recorded.")
            return
        click.echo(render_conversation(messages))
    elif metadata:
        click.echo(json_mod.dumps(meta, indent=2))
    else:
        summary = store.read_summary(task_id)
        if summary is None:
            click.echo("No summary available (session may not have been folded).")
        else:
            click.echo(summary)
            drift = _drift_for(meta)
            if drift is not None:
                click.echo("\n" + format_drift_warning(drift))


def _drift_for(meta: dict[str, Any]) -> Optional[ContextDrift]:
    """Drift against the conversation log the session took its context from."""
    log = meta.get("conversationLog")
    started = parse_timestamp(meta.get("createdAt"))
    if not log or started is None or not Path(log).is_file():
        return None
    return calculate_drift(started, Path(log))

