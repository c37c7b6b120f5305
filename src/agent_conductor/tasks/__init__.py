"""Task dependency runner: ordered execution and shell verification of tasks.json."""

from agent_conductor.tasks.models import TaskItem, TaskOutcome, TaskRunSummary, VerificationResult
from agent_conductor.tasks.runner import (
    TaskRunner,
    extract_verification_commands,
    generate_summary,
    load_tasks,
    resolve_tasks_path,
    select_agent_for_task,
    topological_order,
    verify_task,
)

__all__ = [
    "TaskItem",
    "TaskOutcome",
    "TaskRunSummary",
    "TaskRunner",
    "VerificationResult",
    "extract_verification_commands",
    "generate_summary",
    "load_tasks",
    "resolve_tasks_path",
    "select_agent_for_task",
    "topological_order",
    "verify_task",
]
