"""Task dependency runner.

Works through a flat task list in dependency order. Each ready task is
dispatched to an agent chosen from its phase, then verified by running the
shell commands listed under the task's ``### Verification`` heading. A task
is marked done only when every command exits 0.

Every attempt is recorded in an append-only JSONL audit log.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from agent_conductor.config import state_dir
from agent_conductor.engines.base import CancellationToken
from agent_conductor.errors import AgentExecutionError, TaskRunnerError
from agent_conductor.tasks.models import TaskItem, TaskOutcome, TaskRunSummary, VerificationResult

logger = logging.getLogger(__name__)

EXCERPT_LIMIT = 1500
DEFAULT_MAX_ATTEMPTS = 3

SYSTEM_GUIDANCE = (
    "---\n"
    "System Guidance:\n"
    "You are a specialized implementation agent in a multi-agent system.\n"
    "Follow the task details precisely and produce concrete changes in the workspace.\n"
    "MUST NOT alter unrelated files. Keep diffs minimal and focused."
)

_CODE_SPAN = re.compile(r"`([^`]+)`")
_UI_WORD = re.compile(r"\bui\b")

TaskExecute = Callable[[str, str], Awaitable[Any]]
Verifier = Callable[[TaskItem, Path], Awaitable[VerificationResult]]


# ============================================================================
# Files
# ============================================================================


def resolve_tasks_path(cwd: Path, override: str | Path | None = None) -> Path:
    """tasks.json location: the override, else plan/tasks.json, else tasks.json."""
    if override:
        return (cwd / override).resolve()
    plan_path = state_dir(cwd) / "plan" / "tasks.json"
    if plan_path.exists():
        return plan_path
    return state_dir(cwd) / "tasks.json"


def load_task_document(tasks_path: Path) -> list[dict[str, Any]]:
    """Raw task dicts, exactly as stored.

    Raises:
        TaskRunnerError: If the file is missing or not valid JSON.
    """
    try:
        parsed = json.loads(tasks_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise TaskRunnerError(f"Unable to read tasks file: {tasks_path}") from e
    except json.JSONDecodeError as e:
        raise TaskRunnerError(f"Invalid JSON in tasks file {tasks_path}: {e}") from e
    raw = parsed.get("tasks") if isinstance(parsed, dict) else None
    if not isinstance(raw, list):
        return []
    return [entry for entry in raw if isinstance(entry, dict) and "id" in entry]


def load_tasks(tasks_path: Path) -> list[TaskItem]:
    return [TaskItem.from_dict(entry) for entry in load_task_document(tasks_path)]


def save_task_document(tasks_path: Path, tasks: list[dict[str, Any]]) -> None:
    tasks_path.parent.mkdir(parents=True, exist_ok=True)
    tasks_path.write_text(json.dumps({"tasks": tasks}, indent=2) + "\n", encoding="utf-8")


def mark_task_done(tasks_path: Path, task_id: str) -> None:
    """Set ``done`` on one task and rewrite the file, keeping every other key as stored."""
    document = load_task_document(tasks_path)
    for entry in document:
        if str(entry.get("id")) == task_id:
            entry["done"] = True
    save_task_document(tasks_path, document)


def append_log(logs_path: Path, record: dict[str, Any]) -> None:
    logs_path.parent.mkdir(parents=True, exist_ok=True)
    with logs_path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, sort_keys=True))
        handle.write("\n")


def _read_first(*paths: Path) -> str:
    for path in paths:
        if path.exists():
            return path.read_text(encoding="utf-8")
    return ""


# ============================================================================
# Routing, ordering and verification
# ============================================================================


def select_agent_for_task(task: TaskItem) -> str:
    """Pick the agent for a task from its phase and keywords."""
    text = f"{task.name}\n{task.details}".lower()
    if task.phase == "Planning":
        return "master-mind"
    if task.phase == "Building":
        if "frontend" in text or _UI_WORD.search(text):
            return "frontend-dev"
        return "backend-dev"
    if task.phase == "Testing":
        return "qa-engineer"
    if task.phase == "Runtime":
        return "performance-engineer"
    return "master-mind"


def topological_order(tasks: list[TaskItem]) -> list[TaskItem]:
    """Kahn's algorithm over ``depends_on``.

    Tasks caught in a cycle, or depending on unknown ids, are appended in
    their original order.
    """
    by_id = {task.id: task for task in tasks}
    in_degree = {task.id: len(task.depends_on) for task in tasks}
    dependents: dict[str, list[str]] = {}
    for task in tasks:
        for dep in task.depends_on:
            dependents.setdefault(dep, []).append(task.id)

    queue = deque(task_id for task_id, degree in in_degree.items() if degree == 0)
    ordered: list[TaskItem] = []
    while queue:
        task_id = queue.popleft()
        ordered.append(by_id[task_id])
        for dependent in dependents.get(task_id, []):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) != len(tasks):
        seen = {task.id for task in ordered}
        ordered.extend(task for task in tasks if task.id not in seen)
    return ordered


def extract_verification_commands(text: str) -> list[str]:
    """Inline code spans between ``### Verification`` and the next ``### `` heading."""
    lines = text.splitlines()
    start = next(
        (i for i, line in enumerate(lines) if line.strip().lower().startswith("### verification")),
        None,
    )
    if start is None:
        return []

    commands: list[str] = []
    for line in lines[start + 1 :]:
        if line.strip().startswith("### "):
            break
        for match in _CODE_SPAN.finditer(line):
            command = match.group(1).strip()
            if command:
                commands.append(command)
    return commands


async def run_shell_command(command: str, cwd: Path) -> bool:
    try:
        process = await asyncio.create_subprocess_exec(
            "bash",
            "-lc",
            command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.warning(f"Could not start verification command {command!r}: {e}")
        return False
    return await process.wait() == 0


async def verify_task(task: TaskItem, cwd: Path) -> VerificationResult:
    commands = extract_verification_commands(task.details)
    if not commands:
        return VerificationResult(ok=False)
    for command in commands:
        if not await run_shell_command(command, cwd):
            return VerificationResult(ok=False, failed_command=command)
    return VerificationResult(ok=True)


# ============================================================================
# Prompts
# ============================================================================


def build_task_prompt(task: TaskItem) -> str:
    acceptance = f"\n\nAcceptance: {task.acceptance_criteria}" if task.acceptance_criteria else ""
    return f"{task.name}\n\n{task.details}{acceptance}".strip()


def build_remediation_prompt(prompt: str, failed_command: str) -> str:
    return (
        f"{prompt}\n\n---\nRemediation:\n"
        f"The previous attempt did not pass verification. The command `{failed_command}` failed.\n"
        "Fix the workspace so that this command exits with status 0."
    )


# ============================================================================
# Runner
# ============================================================================


class TaskRunner:
    """Runs ready tasks pass after pass until a pass makes no progress."""

    def __init__(
        self,
        cwd: Path,
        *,
        execute: TaskExecute,
        tasks_path: str | Path | None = None,
        logs_path: str | Path | None = None,
        verifier: Verifier | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        cancel: CancellationToken | None = None,
    ) -> None:
        self.cwd = cwd.resolve()
        self.execute = execute
        self.tasks_path = resolve_tasks_path(self.cwd, tasks_path)
        self.logs_path = (self.cwd / logs_path) if logs_path else state_dir(self.cwd) / "logs.jsonl"
        self.verifier = verifier or verify_task
        self.max_attempts = max(1, max_attempts)
        self.cancel = cancel

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled

    def _context(self) -> list[str]:
        cm = state_dir(self.cwd)
        plan = _read_first(cm / "plan" / "plan.md", cm / "plan.md")
        spec = _read_first(cm / "inputs" / "specifications.md")
        sections: list[str] = []
        if plan:
            sections.append(f"Project plan (excerpt)\n---\n{plan[:EXCERPT_LIMIT]}")
        if spec:
            sections.append(f"Specification (excerpt)\n---\n{spec[:EXCERPT_LIMIT]}")
        return sections

    def compose_prompt(self, task: TaskItem, context: list[str]) -> str:
        return "\n".join([build_task_prompt(task), "", SYSTEM_GUIDANCE, *context])

    def _record(self, task: TaskItem, agent: str, outcome: TaskOutcome, **fields: Any) -> None:
        record: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "taskId": task.id,
            "taskName": task.name,
            "phase": task.phase,
            "agent": agent,
            "outcome": str(outcome),
        }
        record.update({k: v for k, v in fields.items() if v is not None})
        append_log(self.logs_path, record)

    async def run_task(self, task: TaskItem, context: list[str]) -> VerificationResult:
        """Execute and verify one task, retrying with remediation prompts."""
        agent = select_agent_for_task(task)
        prompt = self.compose_prompt(task, context)
        started = time.monotonic()
        self._record(task, agent, TaskOutcome.START)
        logger.info(f"Task {task.id} ({task.name}) dispatched to {agent}")

        result = VerificationResult(ok=False)
        agent_error: str | None = None
        attempt_prompt = prompt
        for attempt in range(1, self.max_attempts + 1):
            if self.cancelled:
                break
            try:
                await self.execute(agent, attempt_prompt)
                agent_error = None
            except AgentExecutionError as e:
                logger.warning(f"Task {task.id} attempt {attempt} failed: {e}")
                agent_error = str(e)
                continue

            result = await self.verifier(task, self.cwd)
            if result.ok:
                break
            if result.failed_command is None:
                break
            logger.info(f"Task {task.id} attempt {attempt}: {result.message}")
            attempt_prompt = build_remediation_prompt(prompt, result.failed_command)

        duration_ms = int((time.monotonic() - started) * 1000)
        if result.ok:
            self._record(task, agent, TaskOutcome.SUCCESS, durationMs=duration_ms)
        else:
            message = f"Agent failed: {agent_error}" if agent_error else result.message
            self._record(task, agent, TaskOutcome.FAILED, durationMs=duration_ms, message=message)
        return result

    async def run(self) -> TaskRunSummary:
        """Run passes until every reachable task is done or no progress is made.

        Raises:
            TaskRunnerError: If the tasks file cannot be read.
        """
        summary = TaskRunSummary()
        context = self._context()

        progress = True
        while progress and not self.cancelled:
            progress = False
            summary.passes += 1
            ordered = topological_order(load_tasks(self.tasks_path))
            done = {task.id for task in ordered if task.done}

            for task in ordered:
                if self.cancelled:
                    break
                if task.done or not all(dep in done for dep in task.depends_on):
                    continue

                result = await self.run_task(task, context)
                if result.ok:
                    mark_task_done(self.tasks_path, task.id)
                    done.add(task.id)
                    summary.completed.append(task.id)
                    progress = True
                elif task.id not in summary.failed:
                    summary.failed.append(task.id)

        summary.failed = [task_id for task_id in summary.failed if task_id not in summary.completed]
        logger.info(
            f"Task run finished after {summary.passes} pass(es): "
            f"{len(summary.completed)} completed, {len(summary.failed)} failed"
        )
        return summary


def generate_summary(tasks_path: Path, output_path: Path) -> None:
    """Write a markdown progress summary of the tasks file."""
    tasks = load_tasks(tasks_path)
    completed = [t for t in tasks if t.done]
    remaining = [t for t in tasks if not t.done]

    lines = [
        "# Project Summary",
        "",
        f"- Completed: {len(completed)}",
        f"- Remaining: {len(remaining)}",
        "",
        "## Completed Tasks",
        *([f"- [x] {t.id}: {t.name}" for t in completed] or ["- None"]),
        "",
        "## Remaining Tasks",
        *([f"- [ ] {t.id}: {t.name}" for t in remaining] or ["- None"]),
        "",
    ]
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text("\n".join(lines), encoding="utf-8")


__all__ = [
    "TaskRunner",
    "append_log",
    "build_remediation_prompt",
    "build_task_prompt",
    "extract_verification_commands",
    "generate_summary",
    "load_tasks",
    "mark_task_done",
    "resolve_tasks_path",
    "select_agent_for_task",
    "topological_order",
    "verify_task",
]
