"""Shared helpers for conductor CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from agent_conductor.config import ConductorConfig, find_project_root, load_conductor_config
from agent_conductor.engines.runner import AgentRunner
from agent_conductor.errors import ConductorError
from agent_conductor.monitoring.monitor import AgentMonitor, open_monitor

T = TypeVar("T")

console = Console()


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def run_or_exit(fn: Callable[[], T]) -> T:
    """Run ``fn``, turning conductor errors into a red message and exit code 1."""
    try:
        return fn()
    except ConductorError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


def project_root() -> Path:
    return find_project_root()


def load_config(root: Path) -> ConductorConfig:
    return run_or_exit(lambda: load_conductor_config(root))


def build_runner(root: Path, config: ConductorConfig, monitor: AgentMonitor) -> AgentRunner:
    runner = AgentRunner.from_config(config, monitor=monitor, working_dir=root)
    if not len(runner.registry):
        console.print("[yellow]No engines configured in .codemachine/config.yaml[/yellow]")
    return runner


def open_project_monitor(root: Path) -> AgentMonitor:
    return run_or_exit(lambda: open_monitor(root))


def stream_output(_name: str, chunk: str) -> None:
    console.out(chunk, end="", highlight=False)


__all__ = [
    "build_runner",
    "configure_logging",
    "console",
    "load_config",
    "open_project_monitor",
    "project_root",
    "run_or_exit",
    "stream_output",
]
