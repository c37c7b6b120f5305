"""Coordination service: parse a script, execute it and report the outcome."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from agent_conductor.config import ConductorConfig
from agent_conductor.coordinator.executor import AgentRunnerLike, CoordinationExecutor
from agent_conductor.coordinator.models import CoordinationPlan, CoordinationResult
from agent_conductor.coordinator.parser import format_plan, parse_script
from agent_conductor.monitoring.monitor import AgentMonitor
from agent_conductor.prompts import load_agent_template

logger = logging.getLogger(__name__)


def create_plan_table(plan: CoordinationPlan) -> Table:
    table = Table(title="[bold]Coordination Plan[/bold]", show_header=True, header_style="bold cyan")
    table.add_column("Group", style="cyan", width=6)
    table.add_column("Mode", width=11)
    table.add_column("Agent", style="green")
    table.add_column("Input")
    table.add_column("Prompt")

    for index, group in enumerate(plan.groups, start=1):
        for command in group.commands:
            table.add_row(
                str(index),
                str(group.mode),
                command.name,
                escape(", ".join(command.input or [])) or "-",
                escape(command.prompt) if command.prompt else "[dim](template only)[/dim]",
            )
    return table


def print_coordination_summary(result: CoordinationResult, console: Console) -> None:
    """Print a per-agent outcome table and an overall status panel."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Agent", style="green")
    table.add_column("ID", width=6)
    table.add_column("Status", width=10)
    table.add_column("Detail")

    for r in result.results:
        status = "[green]done[/green]" if r.success else "[red]failed[/red]"
        detail = r.error or (f"last {r.tail_applied} lines" if r.tail_applied else "")
        if len(detail) > 80:
            detail = detail[:80] + "..."
        table.add_row(r.name, str(r.agent_id or "-"), status, escape(detail))

    console.print(table)
    color = "green" if result.success else "red"
    text = "COORDINATION SUCCEEDED" if result.success else "COORDINATION FAILED"
    console.print(Panel(f"[bold {color}]{text}[/bold {color}]", border_style=color))


class CoordinationService:
    """Ties the parser, executor and console reporting together."""

    def __init__(
        self,
        root: Path,
        *,
        config: ConductorConfig,
        monitor: AgentMonitor,
        runner: AgentRunnerLike,
        console: Console | None = None,
    ) -> None:
        self.root = root
        self.config = config
        self.monitor = monitor
        self.runner = runner
        self.console = console or Console()

    def _load_template(self, name: str) -> str:
        return load_agent_template(name, self.root, self.config)

    async def run(
        self,
        script: str,
        *,
        parent_id: int | None = None,
        dry_run: bool = False,
    ) -> CoordinationResult | None:
        """Parse and execute ``script``.

        Returns:
            The coordination result, or None for a dry run.

        Raises:
            CoordinationParseError: If the script is malformed.
        """
        plan = parse_script(script)
        logger.info(f"Coordination plan: {format_plan(plan)}")
        self.console.print(create_plan_table(plan))
        if dry_run:
            return None

        executor = CoordinationExecutor(
            self.root,
            runner=self.runner,
            monitor=self.monitor,
            parent_id=parent_id,
            placeholders=self.config.placeholders,
            template_loader=self._load_template,
            on_output=lambda name, chunk: self.console.out(chunk, end="", highlight=False),
        )
        result = await executor.execute(plan)

        for r in result.results:
            if r.tail_applied and r.output:
                self.console.rule(f"{r.name} (last {r.tail_applied} lines)")
                self.console.out(r.output, highlight=False)

        print_coordination_summary(result, self.console)
        return result


__all__ = ["CoordinationService", "create_plan_table", "print_coordination_summary"]
