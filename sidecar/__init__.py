"""
Sidecar — delegate work from a coding conversation to a second agent.

A sidecar task takes a briefing plus a bounded window of the parent
conversation, runs it against an external agent runtime, and folds the
resulting summary back. Within a task, subagents can be spawned under a
concurrency limit, with read-only exploration routed to a cheaper model.

Layers (bottom to top):
    1. Agent runtime boundary (runtime/)
    2. Context window and session resolution (context/)
    3. Model routing and prompt assembly (routing, prompts)
    4. Scheduling and completion polling (orchestration/)
    5. Persistence, runner and CLI (store, runner, cli/)
"""

__version__ = "0.1.0"
