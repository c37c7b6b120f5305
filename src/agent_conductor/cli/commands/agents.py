"""`conductor agents` - inspect the agent registry."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.table import Table
from rich.tree import Tree

from agent_conductor.cli.helpers import console, open_project_monitor, project_root
from agent_conductor.monitoring.logger import read_log
from agent_conductor.monitoring.models import AgentNode, AgentRecord, AgentStatus
from agent_conductor.monitoring.monitor import AgentMonitor

app = typer.Typer(help="Inspect registered agents", no_args_is_help=True)

_STATUS_STYLE = {
    AgentStatus.RUNNING: "yellow",
    AgentStatus.COMPLETED: "green",
    AgentStatus.FAILED: "red",
}


def _print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _format_duration(ms: int | None) -> str:
    if ms is None:
        return "-"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    return f"{int(seconds // 60)}m{int(seconds % 60):02d}s"


def _status_text(status: AgentStatus) -> str:
    style = _STATUS_STYLE.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _label(record: AgentRecord) -> str:
    return f"[bold]{record.id}[/bold] {record.name} {_status_text(record.status)} {_format_duration(record.duration)}"


def _add_branch(tree: Tree, node: AgentNode) -> None:
    branch = tree.add(_label(node.agent))
    for child in node.children:
        _add_branch(branch, child)


def _with_monitor(fn):
    monitor: AgentMonitor = open_project_monitor(project_root())
    try:
        return fn(monitor)
    finally:
        monitor.close()


@app.command("list")
def list_command(
    status: AgentStatus | None = typer.Option(None, "--status", help="Only agents with this status"),
    parent: int | None = typer.Option(None, "--parent", help="Only children of this agent id"),
    tree: bool = typer.Option(False, "--tree", help="Show the parent/child hierarchy"),
    as_json: bool = typer.Option(False, "--json", help="Render as JSON"),
) -> None:
    """List agents recorded in the registry."""

    def _run(monitor: AgentMonitor) -> None:
        if tree:
            roots = monitor.build_agent_tree()
            if as_json:
                _print_json([node.to_dict() for node in roots])
                return
            if not roots:
                console.print("[dim]No agents recorded[/dim]")
                return
            view = Tree("[bold cyan]Agents[/bold cyan]")
            for node in roots:
                _add_branch(view, node)
            console.print(view)
            return

        records = monitor.query_agents(status=status, parent_id=parent)
        if as_json:
            _print_json([r.to_dict() for r in records])
            return
        if not records:
            console.print("[dim]No agents recorded[/dim]")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("ID", width=6)
        table.add_column("Name", style="green")
        table.add_column("Status")
        table.add_column("Parent", width=7)
        table.add_column("Engine")
        table.add_column("Duration", justify="right")
        table.add_column("Started")
        for r in records:
            table.add_row(
                str(r.id),
                r.name,
                _status_text(r.status),
                str(r.parent_id) if r.parent_id is not None else "-",
                r.engine or "-",
                _format_duration(r.duration),
                r.start_time.strftime("%Y-%m-%d %H:%M:%S"),
            )
        console.print(table)

    _with_monitor(_run)


@app.command("show")
def show_command(agent_id: int = typer.Argument(..., help="Agent id")) -> None:
    """Show one agent record."""

    def _run(monitor: AgentMonitor) -> None:
        record = monitor.get_agent(agent_id)
        if record is None:
            console.print(f"[red]Error:[/red] Agent {agent_id} not found")
            raise typer.Exit(1)
        _print_json(record.to_dict())

    _with_monitor(_run)


@app.command("logs")
def logs_command(
    agent_id: int = typer.Argument(..., help="Agent id"),
    tail: int | None = typer.Option(None, "--tail", "-n", help="Only the last N lines"),
) -> None:
    """Print an agent's log file."""

    def _run(monitor: AgentMonitor) -> None:
        record = monitor.get_agent(agent_id)
        if record is None:
            console.print(f"[red]Error:[/red] Agent {agent_id} not found")
            raise typer.Exit(1)
        path = Path(record.log_path)
        if not path.exists():
            console.print(f"[yellow]Log file not found:[/yellow] {path}")
            raise typer.Exit(1)
        console.out(read_log(path, tail), highlight=False)

    _with_monitor(_run)


@app.command("clear")
def clear_command(agent_id: int = typer.Argument(..., help="Agent whose descendants are removed")) -> None:
    """Remove every descendant of an agent from the registry."""

    def _run(monitor: AgentMonitor) -> None:
        removed = monitor.clear_descendants(agent_id)
        console.print(f"Removed {removed} descendant(s) of agent {agent_id}")

    _with_monitor(_run)
