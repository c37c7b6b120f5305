"""Step skipping rules for resumed runs and active loops."""

from __future__ import annotations

from collections.abc import Collection

from agent_conductor.workflows.models import ActiveLoop, SkipDecision, WorkflowStep


def should_skip_step(
    step: WorkflowStep,
    index: int,
    completed: Collection[int],
    active_loop: ActiveLoop | None,
) -> SkipDecision:
    if step.execute_once and index in completed:
        return SkipDecision(skip=True, reason=f"{step.agent_name} skipped (already completed).")
    if active_loop is not None and step.agent_id in active_loop.skip:
        return SkipDecision(skip=True, reason=f"{step.agent_name} skipped (loop configuration).")
    return SkipDecision(skip=False)


__all__ = ["should_skip_step"]
