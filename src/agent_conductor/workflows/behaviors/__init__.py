"""Workflow behaviors: loop, checkpoint, trigger and skip evaluation."""

from agent_conductor.workflows.behaviors.behavior_file import (
    BehaviorAction,
    BehaviorActionType,
    BehaviorFile,
    behavior_file_path,
)
from agent_conductor.workflows.behaviors.checkpoint import evaluate_checkpoint
from agent_conductor.workflows.behaviors.loop import evaluate_loop, last_meaningful_line, strip_ansi
from agent_conductor.workflows.behaviors.skip import should_skip_step
from agent_conductor.workflows.behaviors.trigger import evaluate_trigger

__all__ = [
    "BehaviorAction",
    "BehaviorActionType",
    "BehaviorFile",
    "behavior_file_path",
    "evaluate_checkpoint",
    "evaluate_loop",
    "evaluate_trigger",
    "last_meaningful_line",
    "should_skip_step",
    "strip_ansi",
]
