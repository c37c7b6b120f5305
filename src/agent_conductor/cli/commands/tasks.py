"""`conductor tasks` - run tasks.json through agents and summarize progress."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.panel import Panel

from agent_conductor.cli.helpers import (
    build_runner,
    console,
    load_config,
    open_project_monitor,
    project_root,
    run_or_exit,
    stream_output,
)
from agent_conductor.config import ConductorConfig, state_dir
from agent_conductor.coordinator.inputs import build_composite_prompt
from agent_conductor.engines.runner import AgentRun, AgentRunner
from agent_conductor.prompts import load_agent_template
from agent_conductor.tasks.runner import TaskRunner, generate_summary, resolve_tasks_path

app = typer.Typer(help="Run dependency-ordered tasks with verification", no_args_is_help=True)


def task_executor(root: Path, config: ConductorConfig, runner: AgentRunner):
    """Run the routed agent with its catalog template, when it has one."""
    known = {agent.id for agent in config.agents}

    async def _execute(agent_id: str, prompt: str) -> AgentRun:
        template = load_agent_template(agent_id, root, config) if agent_id in known else ""
        composite = build_composite_prompt(template, "", prompt)
        return await runner.run(agent_id, composite, on_output=lambda chunk: stream_output(agent_id, chunk))

    return _execute


@app.command("run")
def run_command(
    tasks_path: Path | None = typer.Option(None, "--tasks-path", help="tasks.json to work through"),
    logs_path: Path | None = typer.Option(None, "--logs-path", help="JSONL audit log"),
) -> None:
    """Execute ready tasks until no more progress is possible."""
    root = project_root()
    config = load_config(root)
    monitor = open_project_monitor(root)
    try:
        runner = TaskRunner(
            root,
            execute=task_executor(root, config, build_runner(root, config, monitor)),
            tasks_path=tasks_path,
            logs_path=logs_path,
        )
        summary = run_or_exit(lambda: asyncio.run(runner.run()))
    finally:
        monitor.close()

    color = "green" if not summary.failed else "yellow"
    console.print(
        Panel(
            f"Completed: {len(summary.completed)}\nFailed: {len(summary.failed)}\nPasses: {summary.passes}",
            title="Task run",
            border_style=color,
        )
    )


@app.command("summary")
def summary_command(
    tasks_path: Path | None = typer.Option(None, "--tasks-path", help="tasks.json to summarize"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Markdown file to write"),
) -> None:
    """Write a markdown summary of completed and remaining tasks."""
    root = project_root()
    source = resolve_tasks_path(root, tasks_path)
    target = output if output is not None else state_dir(root) / "summary.md"
    run_or_exit(lambda: generate_summary(source, target))
    console.print(f"Summary written to {target}")
