"""Command line interface for the conductor.

    conductor coordinate "planner 'draft' && coder & tester"
    conductor agents list --tree
    conductor workflow run workflows/default.yaml
    conductor tasks run
"""

from __future__ import annotations

import typer

from agent_conductor import __version__
from agent_conductor.cli.commands import agents, coordinate, tasks, workflow
from agent_conductor.cli.helpers import configure_logging, console

app = typer.Typer(
    name="conductor",
    help="Coordinate coding agents: parallel/sequential scripts, workflows and task runs",
    no_args_is_help=True,
    add_completion=False,
)

app.command("coordinate")(coordinate.coordinate_command)
app.add_typer(agents.app, name="agents")
app.add_typer(workflow.app, name="workflow")
app.add_typer(tasks.app, name="tasks")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"conductor {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show the version and exit"
    ),
) -> None:
    """Configure logging before any command runs."""
    configure_logging(verbose)


def main() -> None:
    app()


__all__ = ["app", "main"]
