"""Resume and continue commands — run again from a recorded session."""

from __future__ import annotations

import os
from typing import Optional

import click

from sidecar.cli.app import async_cmd
from sidecar.cli.start_cmd import build_config, progress_listener, report_result

_summary_length = click.option(
    "--summary-length",
    type=click.Choice(["brief", "normal", "verbose"]),
    default="normal",
    show_default=True,
)


@click.command("resume")
@click.argument("task_id")
@click.option("--project", type=click.Path(file_okay=False), default=None, help="Project directory")
@click.option("--timeout", type=float, default=None, help="Timeout in minutes")
@_summary_length
@click.option("--thinking", default=None, help="Reasoning effort passed to the model")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def resume_cmd(
    ctx: click.Context,
    task_id: str,
    project: Optional[str],
    timeout: Optional[float],
    summary_length: str,
    thinking: Optional[str],
    json_output: bool,
) -> None:
    """Resume a previous session headlessly with its original model and briefing."""
    from sidecar.runner import resume_headless
    from sidecar.store import SessionNotFoundError

    try:
        result = await resume_headless(
            build_config(timeout=timeout),
            task_id,
            project=project or os.getcwd(),
            summary_length=summary_length,
            thinking=thinking,
            listener=progress_listener(ctx),
        )
    except (SessionNotFoundError, ValueError):
        raise click.ClickException(f"Session {task_id} not found") from None
    report_result(ctx, result, json_output)


@click.command("continue")
@click.argument("task_id")
@click.option("--briefing", "-b", required=True, help="New task building on the previous session")
@click.option("--model", "-m", default=None, help="Model (default: the previous session's)")
@click.option("--agent", default=None, help="Primary agent (default: the previous session's)")
@click.option("--project", type=click.Path(file_okay=False), default=None, help="Project directory")
@click.option("--context-max-tokens", type=int, default=None, help="Token cap for the previous conversation")
@click.option("--timeout", type=float, default=None, help="Timeout in minutes")
@_summary_length
@click.option("--thinking", default=None, help="Reasoning effort passed to the model")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def continue_cmd(
    ctx: click.Context,
    task_id: str,
    briefing: str,
    model: Optional[str],
    agent: Optional[str],
    project: Optional[str],
    context_max_tokens: Optional[int],
    timeout: Optional[float],
    summary_length: str,
    thinking: Optional[str],
    json_output: bool,
) -> None:
    """Start a new headless session that builds on a previous one."""
    from sidecar.runner import continue_headless
    from sidecar.store import SessionNotFoundError

    if not briefing.strip():
        raise click.BadParameter("briefing must not be empty", param_hint="--briefing")

    try:
        result = await continue_headless(
            build_config(context_max_tokens=context_max_tokens, timeout=timeout),
            task_id,
            briefing=briefing,
            project=project or os.getcwd(),
            model=model,
            agent=agent,
            summary_length=summary_length,
            thinking=thinking,
            listener=progress_listener(ctx),
        )
    except (SessionNotFoundError, ValueError):
        raise click.ClickException(f"Session {task_id} not found") from None
    report_result(ctx, result, json_output)
