"""Start command — run one headless sidecar task and print its summary."""

from __future__ import annotations

import json as json_mod
import os
from typing import TYPE_CHECKING, Any, Optional

import click

from sidecar.cli.app import async_cmd
from sidecar.cli.formatters import event_printer

if TYPE_CHECKING:
    from sidecar.config import SidecarConfig
    from sidecar.events import Listener
    from sidecar.orchestration.models import HeadlessResult


def build_config(
    context_turns: Optional[int] = None,
    context_since: Optional[str] = None,
    context_max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
) -> "SidecarConfig":
    """Settings from the environment with command-line overrides applied."""
    from sidecar.config import SidecarConfig

    config = SidecarConfig()
    if context_turns is not None:
        config.context.turns = max(0, context_turns)
    if context_since:
        config.context.since = context_since
    if context_max_tokens is not None:
        config.context.max_tokens = max(1, context_max_tokens)
    if timeout is not None:
        config.headless.timeout_seconds = max(0.0, timeout * 60.0)
    return config


def progress_listener(ctx: click.Context) -> Optional["Listener"]:
    """Prints lifecycle events to stderr under ``--verbose``."""
    obj: dict[str, Any] = ctx.obj or {}
    if not obj.get("verbose"):
        return None
    return event_printer(bool(obj.get("no_color")))


def report_result(ctx: click.Context, result: "HeadlessResult", json_output: bool) -> None:
    if json_output:
        click.echo(json_mod.dumps(result.model_dump(), indent=2))
    else:
        click.echo(result.summary)
        if result.timed_out:
            click.echo("\n[sidecar timed out; summary may be incomplete]", err=True)
        if result.error:
            click.echo(f"\nError: {result.error}", err=True)

    if result.error:
        ctx.exit(1)


@click.command("start")
@click.option("--model", "-m", required=True, help="Model, e.g. openrouter/google/gemini-2.5-flash")
@click.option("--briefing", "-b", required=True, help="Task for the sidecar agent")
@click.option("--session", "session_id", default=None, help="Conversation session id (default: most recent)")
@click.option("--project", type=click.Path(file_okay=False), default=None, help="Project directory")
@click.option("--agent", default=None, help="Primary agent: Build or Plan")
@click.option("--context-turns", type=int, default=None, help="Number of user turns of context")
@click.option("--context-since", default=None, help="Time window of context, e.g. 2h")
@click.option("--context-max-tokens", type=int, default=None, help="Token cap for context")
@click.option("--timeout", type=float, default=None, help="Timeout in minutes")
@click.option(
    "--summary-length",
    type=click.Choice(["brief", "normal", "verbose"]),
    default="normal",
    show_default=True,
)
@click.option("--thinking", default=None, help="Reasoning effort passed to the model")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def start_cmd(
    ctx: click.Context,
    model: str,
    briefing: str,
    session_id: Optional[str],
    project: Optional[str],
    agent: Optional[str],
    context_turns: Optional[int],
    context_since: Optional[str],
    context_max_tokens: Optional[int],
    timeout: Optional[float],
    summary_length: str,
    thinking: Optional[str],
    json_output: bool,
) -> None:
    """Run a headless sidecar task."""
    from sidecar.runner import run_headless

    config = build_config(context_turns, context_since, context_max_tokens, timeout)

    if not briefing.strip():
        raise click.BadParameter("briefing must not be empty", param_hint="--briefing")

    result = await run_headless(
        config,
        briefing=briefing,
        project=project or os.getcwd(),
        model=model,
        session=session_id,
        agent=agent,
        summary_length=summary_length,
        thinking=thinking,
        listener=progress_listener(ctx),
    )
    report_result(ctx, result, json_output)
