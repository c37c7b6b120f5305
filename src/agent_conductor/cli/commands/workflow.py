"""`conductor workflow` - run workflow templates and inspect resume state."""

from __future__ import annotations

import asyncio
import dataclasses
import signal
from pathlib import Path

import typer
from rich.panel import Panel
from rich.table import Table

from agent_conductor.cli.helpers import (
    build_runner,
    console,
    load_config,
    open_project_monitor,
    project_root,
    run_or_exit,
    stream_output,
)
from agent_conductor.workflows.models import (
    CheckpointAction,
    StepStatus,
    WorkflowRunResult,
    WorkflowStep,
    WorkflowTemplate,
)
from agent_conductor.workflows.runner import AgentStepExecutor, WorkflowRunner
from agent_conductor.workflows.templates import load_workflow_template
from agent_conductor.workflows.tracking import TemplateTracker

app = typer.Typer(help="Run multi-step agent workflows", no_args_is_help=True)

_STEP_STYLE = {
    StepStatus.COMPLETED: "green",
    StepStatus.SKIPPED: "dim",
    StepStatus.RUNNING: "yellow",
    StepStatus.FAILED: "red",
}


class InteractiveControl:
    """Terminal control for a workflow run.

    Ctrl+C skips the step that is running; with nothing running it aborts the
    run. While a checkpoint question is open, Ctrl+C only repeats the hint.
    """

    def __init__(self) -> None:
        self.prompting = False
        self._runner: WorkflowRunner | None = None
        self._task: asyncio.Task | None = None

    async def prompt_checkpoint(self, step: WorkflowStep, reason: str | None) -> CheckpointAction:
        console.print(
            Panel(
                f"{step.agent_name} requested a checkpoint.\n{reason or ''}".strip(),
                title="Checkpoint",
                border_style="yellow",
            )
        )
        self.prompting = True
        try:
            proceed = await asyncio.to_thread(typer.confirm, "Continue the workflow?", default=True)
        finally:
            self.prompting = False
        return CheckpointAction.CONTINUE if proceed else CheckpointAction.QUIT

    def interrupt(self) -> None:
        if self.prompting:
            console.print("\n[yellow]Answer 'n' to stop the workflow[/yellow]")
            return
        if self._runner is not None and self._runner.skip_current_step("skipped by user"):
            console.print("\n[yellow]Skipping the current step; press Ctrl+C again to abort[/yellow]")
            return
        if self._task is not None:
            self._task.cancel()

    async def run(self, runner: WorkflowRunner) -> WorkflowRunResult:
        self._runner = runner
        self._task = asyncio.current_task()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.interrupt)
        except (NotImplementedError, RuntimeError):
            # No loop signal handlers here (Windows, or not the main thread).
            return await runner.run()
        try:
            return await runner.run()
        except asyncio.CancelledError:
            console.print("[red]Workflow aborted[/red]")
            raise typer.Exit(130) from None
        finally:
            loop.remove_signal_handler(signal.SIGINT)


def render_run(template: WorkflowTemplate, result: WorkflowRunResult) -> Table:
    table = Table(title=f"[bold]{template.name}[/bold]", show_header=True, header_style="bold cyan")
    table.add_column("#", width=4)
    table.add_column("Step", style="green")
    table.add_column("Status")
    table.add_column("Note")
    for index, (step, state) in enumerate(zip(template.steps, result.steps)):
        style = _STEP_STYLE.get(state.status, "white")
        label = step.agent_name if step.is_module else (step.text or "ui")
        table.add_row(str(index), label, f"[{style}]{state.status}[/{style}]", state.skip_reason or "")
    return table


@app.command("run")
def run_command(
    template_path: Path = typer.Argument(..., help="Workflow template (YAML)"),
    verbose: bool = typer.Option(False, "--verbose", help="Write full prompts into agent log headers"),
) -> None:
    """Run a workflow template, resuming where a previous run stopped."""
    root = project_root()
    config = load_config(root)
    if verbose:
        config = dataclasses.replace(config, verbose=True)
    template_file = template_path if template_path.is_absolute() else root / template_path
    template = run_or_exit(lambda: load_workflow_template(template_file, config.agents))

    control = InteractiveControl()
    monitor = open_project_monitor(root)
    try:
        executor = AgentStepExecutor(root, config, build_runner(root, config, monitor), on_output=stream_output)
        runner = WorkflowRunner(
            template,
            cwd=root,
            step_executor=executor,
            agents=config.agents,
            checkpoint_handler=control.prompt_checkpoint,
        )
        console.print(f"Using workflow template: [bold]{template.name}[/bold]")
        console.print("[dim]Ctrl+C skips the running step[/dim]")
        result = run_or_exit(lambda: asyncio.run(control.run(runner)))
    finally:
        monitor.close()

    console.print(render_run(template, result))
    if result.stopped:
        console.print("[yellow]Workflow stopped at a checkpoint[/yellow]")


@app.command("status")
def status_command() -> None:
    """Show the active template and resume state."""
    tracker = TemplateTracker.for_project(project_root())
    active = tracker.get_active_template()
    if active is None:
        console.print("[dim]No workflow has run in this project[/dim]")
        return

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Active template", active)
    table.add_row("Completed steps", ", ".join(map(str, tracker.get_completed_steps())) or "-")
    table.add_row("Unfinished steps", ", ".join(map(str, tracker.get_not_completed_steps())) or "-")
    table.add_row("Resume from", str(tracker.get_resume_start_index()))
    console.print(table)
