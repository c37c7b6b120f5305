"""Checkpoint evaluation.

Any step may request a checkpoint through the behavior side channel. Steps
configured with a CheckpointBehavior marker also pause when their output
ends with that marker.
"""

from __future__ import annotations

from agent_conductor.workflows.behaviors.behavior_file import BehaviorAction, BehaviorActionType
from agent_conductor.workflows.behaviors.loop import output_ends_with
from agent_conductor.workflows.models import CheckpointBehavior, CheckpointDecision, ModuleBehavior


def evaluate_checkpoint(
    behavior: ModuleBehavior | None,
    output: str,
    *,
    action: BehaviorAction | None = None,
) -> CheckpointDecision | None:
    if action is not None and action.action is BehaviorActionType.CHECKPOINT:
        return CheckpointDecision(reason=action.reason)
    if isinstance(behavior, CheckpointBehavior) and behavior.marker and output_ends_with(output, behavior.marker):
        return CheckpointDecision(reason=f"output ended with {behavior.marker}")
    return None


__all__ = ["evaluate_checkpoint"]
