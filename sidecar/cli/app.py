"""CLI application — Click-based command hierarchy for Sidecar.

The main CLI group and global flags. Subcommand modules register
themselves by importing and adding to the group.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any

import click


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, no_color: bool) -> None:
    """Sidecar - delegate work to a second agent and fold back the summary."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color

    from sidecar.main import configure_logging

    # Log lines go to stderr so stdout stays parseable (e.g. --json).
    configure_logging(logging.DEBUG if verbose else logging.WARNING)


# ---------------------------------------------------------------------------
# Register subcommand modules
# ---------------------------------------------------------------------------

def _register_subcommands() -> None:
    """Import and register all subcommands."""
    from sidecar.cli.sessions import list_cmd, read_cmd
    from sidecar.cli.resume_cmd import continue_cmd, resume_cmd
    from sidecar.cli.start_cmd import start_cmd

    cli.add_command(start_cmd)
    cli.add_command(resume_cmd)
    cli.add_command(continue_cmd)
    cli.add_command(list_cmd)
    cli.add_command(read_cmd)


_register_subcommands()
