"""Workflow data model: steps, module behaviors and per-step runtime state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Union

from agent_conductor.monitoring.models import AgentTelemetry


class StepType(StrEnum):
    MODULE = "module"
    UI = "ui"


class StepStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    RETRYING = "retrying"


class CheckpointAction(StrEnum):
    CONTINUE = "continue"
    QUIT = "quit"


class WorkflowRunStatus(StrEnum):
    COMPLETED = "completed"
    STOPPED = "stopped"


# ============================================================================
# Module behaviors
# ============================================================================


@dataclass(frozen=True)
class LoopBehavior:
    """Rewind ``steps_back`` steps when the output ends with ``trigger``."""

    trigger: str
    steps_back: int = 1
    max_iterations: int | None = None
    skip: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": "loop", "trigger": self.trigger, "stepsBack": self.steps_back}
        if self.max_iterations is not None:
            d["maxIterations"] = self.max_iterations
        if self.skip:
            d["skip"] = list(self.skip)
        return d


@dataclass(frozen=True)
class CheckpointBehavior:
    """Pause the workflow for a human decision when ``marker`` is emitted."""

    marker: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": "checkpoint"}
        if self.marker:
            d["marker"] = self.marker
        return d


@dataclass(frozen=True)
class TriggerBehavior:
    """Run another catalog agent when ``marker`` is emitted."""

    trigger_agent_id: str | None = None
    marker: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": "trigger"}
        if self.trigger_agent_id:
            d["triggerAgentId"] = self.trigger_agent_id
        if self.marker:
            d["marker"] = self.marker
        return d


ModuleBehavior = Union[LoopBehavior, CheckpointBehavior, TriggerBehavior]


@dataclass(frozen=True)
class ModuleMetadata:
    id: str | None = None
    behavior: ModuleBehavior | None = None


# ============================================================================
# Steps and templates
# ============================================================================


@dataclass(frozen=True)
class WorkflowStep:
    """One entry of a workflow template.

    ``ui`` steps carry only display ``text`` and are never executed.
    """

    type: StepType
    agent_id: str = ""
    agent_name: str = ""
    prompt_path: str | None = None
    model: str | None = None
    engine: str | None = None
    execute_once: bool = False
    not_completed_fallback: str | None = None
    module: ModuleMetadata | None = None
    text: str | None = None

    @property
    def behavior(self) -> ModuleBehavior | None:
        return self.module.behavior if self.module else None

    @property
    def is_module(self) -> bool:
        return self.type is StepType.MODULE

    def to_dict(self) -> dict[str, Any]:
        if self.type is StepType.UI:
            return {"type": "ui", "text": self.text or ""}
        d: dict[str, Any] = {
            "type": "module",
            "agentId": self.agent_id,
            "agentName": self.agent_name,
        }
        if self.prompt_path:
            d["promptPath"] = self.prompt_path
        if self.model:
            d["model"] = self.model
        if self.engine:
            d["engine"] = self.engine
        if self.execute_once:
            d["executeOnce"] = True
        if self.not_completed_fallback:
            d["notCompletedFallback"] = self.not_completed_fallback
        if self.module and (self.module.id or self.module.behavior):
            module: dict[str, Any] = {}
            if self.module.id:
                module["id"] = self.module.id
            if self.module.behavior:
                module["behavior"] = self.module.behavior.to_dict()
            d["module"] = module
        return d


@dataclass(frozen=True)
class WorkflowTemplate:
    name: str
    steps: list[WorkflowStep]
    sub_agent_ids: list[str] = field(default_factory=list)


# ============================================================================
# Runtime state
# ============================================================================


@dataclass
class ActiveLoop:
    """Armed while a loop is repeating; agents in ``skip`` are not re-run."""

    skip: list[str] = field(default_factory=list)


@dataclass
class StepState:
    status: StepStatus = StepStatus.PENDING
    output: str = ""
    telemetry: AgentTelemetry | None = None
    skip_reason: str | None = None
    agent_id: int | None = None

    def reset(self) -> None:
        self.status = StepStatus.PENDING
        self.output = ""
        self.telemetry = None
        self.skip_reason = None
        self.agent_id = None


@dataclass(frozen=True)
class LoopDecision:
    should_repeat: bool
    steps_back: int
    reason: str | None = None


@dataclass(frozen=True)
class CheckpointDecision:
    """A checkpoint that fired; ``reason`` is shown to whoever resolves it."""

    reason: str | None = None


@dataclass(frozen=True)
class TriggerDecision:
    trigger_agent_id: str
    reason: str | None = None


@dataclass(frozen=True)
class SkipDecision:
    skip: bool
    reason: str | None = None


@dataclass(frozen=True)
class StepOutcome:
    """What a step executor hands back to the runner."""

    output: str = ""
    cancelled: bool = False
    agent_id: int | None = None
    telemetry: AgentTelemetry | None = None


@dataclass
class WorkflowRunResult:
    status: WorkflowRunStatus
    steps: list[StepState]

    @property
    def stopped(self) -> bool:
        return self.status is WorkflowRunStatus.STOPPED


__all__ = [
    "ActiveLoop",
    "CheckpointAction",
    "CheckpointBehavior",
    "CheckpointDecision",
    "LoopBehavior",
    "LoopDecision",
    "ModuleBehavior",
    "ModuleMetadata",
    "SkipDecision",
    "StepOutcome",
    "StepState",
    "StepStatus",
    "StepType",
    "TriggerBehavior",
    "TriggerDecision",
    "WorkflowRunResult",
    "WorkflowRunStatus",
    "WorkflowStep",
    "WorkflowTemplate",
]
