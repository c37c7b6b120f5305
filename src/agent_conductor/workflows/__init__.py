"""Workflows: templates, resume tracking and the step state machine."""

from agent_conductor.workflows.models import (
    ActiveLoop,
    CheckpointAction,
    CheckpointBehavior,
    LoopBehavior,
    ModuleMetadata,
    StepOutcome,
    StepState,
    StepStatus,
    StepType,
    TriggerBehavior,
    WorkflowRunResult,
    WorkflowRunStatus,
    WorkflowStep,
    WorkflowTemplate,
)
from agent_conductor.workflows.runner import AgentStepExecutor, CheckpointGate, WorkflowRunner
from agent_conductor.workflows.templates import load_workflow_template, resolve_step
from agent_conductor.workflows.tracking import TemplateTracker

__all__ = [
    "ActiveLoop",
    "AgentStepExecutor",
    "CheckpointAction",
    "CheckpointBehavior",
    "CheckpointGate",
    "LoopBehavior",
    "ModuleMetadata",
    "StepOutcome",
    "StepState",
    "StepStatus",
    "StepType",
    "TemplateTracker",
    "TriggerBehavior",
    "WorkflowRunResult",
    "WorkflowRunStatus",
    "WorkflowRunner",
    "WorkflowStep",
    "WorkflowTemplate",
    "load_workflow_template",
    "resolve_step",
]
