"""CLI formatters — color helpers, status indicators, table formatting."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from sidecar.events import SidecarEvent


def get_console(no_color: bool = False, stderr: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color, stderr=stderr)


def status_indicator(status: str) -> Text:
    """Map a session status to a colored label."""
    mapping = {
        "running": Text("running", style="green"),
        "complete": Text("complete", style="cyan"),
        "completed": Text("completed", style="cyan"),
        "timeout": Text("timeout", style="yellow"),
        "error": Text("error", style="red"),
        "failed": Text("failed", style="red"),
    }
    return mapping.get(status, Text(status or "unknown", style="dim"))


def format_age(created_at: Optional[str], now: Optional[datetime] = None) -> str:
    """ISO timestamp → ``30m ago`` / ``5h ago`` / ``3d ago``."""
    if not created_at:
        return "?"
    try:
        then = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    except ValueError:
        return "?"
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)

    mins = max(0, int((now - then).total_seconds() // 60))
    if mins < 60:
        return f"{mins}m ago"
    hours = mins // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def shorten(text: Optional[str], limit: int = 30) -> str:
    text = text or ""
    return text[:limit] + ("..." if len(text) > limit else "")


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(v if isinstance(v, Text) else str(v) for v in row))
    return table


def format_event(event: SidecarEvent) -> Text:
    """One progress line for a lifecycle event: ``headless.started task_id=... model=...``."""
    fields = event.model_dump(exclude={"event_type"})
    details = " ".join(f"{key}={value}" for key, value in fields.items() if value not in (None, ""))
    return Text.assemble(("sidecar ", "dim"), (event.event_type, "bold"), f" {details}" if details else "")


def event_printer(no_color: bool = False) -> Callable[[SidecarEvent], None]:
    """Listener that writes each event to stderr."""
    console = get_console(no_color, stderr=True)

    def _print(event: SidecarEvent) -> None:
        console.print(format_event(event))

    return _print
