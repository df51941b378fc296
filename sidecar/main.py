"""
Main — console entry point for the ``sidecar`` command.

Configures logging once, then hands over to the click command group. All
behaviour lives in the subsystems; this module only wires them together.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

# Fields that may carry whole prompts or transcripts.
_LONG_FIELDS = ("briefing", "content", "prompt", "system_prompt", "summary", "result")
_MAX_FIELD_LEN = 120


def _truncate_long_fields(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Structlog processor that shortens prompt-sized fields.

    Briefings and summaries can run to tens of kilobytes; logs only need
    enough to recognize them.
    """
    for key in _LONG_FIELDS:
        val = event_dict.get(key)
        if isinstance(val, str) and len(val) > _MAX_FIELD_LEN:
            event_dict[key] = val[:_MAX_FIELD_LEN] + "... [truncated]"
    return event_dict


_logging_configured = False


def configure_logging(level: int = logging.WARNING) -> None:
    """Configure structlog and standard-library logging.

    Safe to call more than once; later calls only adjust the level.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        logging.getLogger().setLevel(level)
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _truncate_long_fields,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    """Entry point for the sidecar command."""
    configure_logging()

    from sidecar.cli.app import cli

    cli()


if __name__ == "__main__":
    main()
