"""`conductor coordinate` - run a coordination script."""

from __future__ import annotations

import asyncio

import typer

from agent_conductor.cli.helpers import (
    build_runner,
    console,
    load_config,
    open_project_monitor,
    project_root,
    run_or_exit,
)
from agent_conductor.coordinator.service import CoordinationService


def coordinate_command(
    script: str = typer.Argument(
        ...,
        help="Coordination script, e.g. \"planner 'draft plan' && coder[input:plan.md] & tester\"",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Parse and show the plan without running agents"),
    parent_id: int | None = typer.Option(None, "--parent-id", help="Record agents as children of this agent id"),
) -> None:
    """Run agents in parallel (&) and sequential (&&) groups."""
    root = project_root()
    config = load_config(root)
    monitor = open_project_monitor(root)
    try:
        service = CoordinationService(
            root,
            config=config,
            monitor=monitor,
            runner=build_runner(root, config, monitor),
            console=console,
        )
        result = run_or_exit(lambda: asyncio.run(service.run(script, parent_id=parent_id, dry_run=dry_run)))
    finally:
        monitor.close()

    if result is not None and not result.success:
        raise typer.Exit(1)
