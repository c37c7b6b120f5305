"""Workflow template loading from YAML.

Example template:

    name: Default workflow
    subAgentIds: [reviewer]
    steps:
      - type: ui
        text: Planning phase
      - type: module
        agentId: planner
        executeOnce: true
        notCompletedFallback: plan-recovery
      - type: module
        agentId: builder
        agentName: Builder
        promptPath: prompts/builder.md
        module:
          id: build-loop
          behavior: {type: loop, trigger: LOOP, stepsBack: 1, maxIterations: 3}

Module steps that omit ``agentName`` or ``promptPath`` are completed from the
agent catalog in config.yaml.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from agent_conductor.config import AgentDefinition
from agent_conductor.errors import WorkflowTemplateError
from agent_conductor.workflows.models import (
    CheckpointBehavior,
    LoopBehavior,
    ModuleBehavior,
    ModuleMetadata,
    StepType,
    TriggerBehavior,
    WorkflowStep,
    WorkflowTemplate,
)

logger = logging.getLogger(__name__)


def _as_string(value: Any, *, field_name: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    raise WorkflowTemplateError(f"Invalid workflow template: '{field_name}' must be a non-empty string")


def _as_optional_string(value: Any, *, field_name: str) -> str | None:
    if value is None:
        return None
    return _as_string(value, field_name=field_name)


def _as_string_list(value: Any, *, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
        raise WorkflowTemplateError(f"Invalid workflow template: '{field_name}' must be a list of strings")
    return list(value)


def _as_positive_int(value: Any, *, field_name: str, default: int | None) -> int | None:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise WorkflowTemplateError(f"Invalid workflow template: '{field_name}' must be a positive integer")
    return value


def parse_behavior(raw: Any, *, field_name: str) -> ModuleBehavior | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise WorkflowTemplateError(f"Invalid workflow template: '{field_name}' must be a mapping")

    kind = raw.get("type")
    if kind == "loop":
        return LoopBehavior(
            trigger=_as_string(raw.get("trigger"), field_name=f"{field_name}.trigger"),
            steps_back=_as_positive_int(raw.get("stepsBack"), field_name=f"{field_name}.stepsBack", default=1) or 1,
            max_iterations=_as_positive_int(
                raw.get("maxIterations"), field_name=f"{field_name}.maxIterations", default=None
            ),
            skip=tuple(_as_string_list(raw.get("skip"), field_name=f"{field_name}.skip")),
        )
    if kind == "checkpoint":
        return CheckpointBehavior(marker=_as_optional_string(raw.get("marker"), field_name=f"{field_name}.marker"))
    if kind == "trigger":
        return TriggerBehavior(
            trigger_agent_id=_as_optional_string(
                raw.get("triggerAgentId"), field_name=f"{field_name}.triggerAgentId"
            ),
            marker=_as_optional_string(raw.get("marker"), field_name=f"{field_name}.marker"),
        )
    raise WorkflowTemplateError(
        f"Invalid workflow template: '{field_name}.type' must be one of loop, checkpoint, trigger"
    )


def resolve_step(agent_id: str, catalog: list[AgentDefinition], **overrides: Any) -> WorkflowStep:
    """Build a module step for a catalog agent.

    Raises:
        WorkflowTemplateError: If the agent is not in the catalog.
    """
    for agent in catalog:
        if agent.id == agent_id:
            fields: dict[str, Any] = {
                "type": StepType.MODULE,
                "agent_id": agent.id,
                "agent_name": agent.name,
                "prompt_path": agent.prompt_path,
                "model": agent.model,
                "engine": agent.engine,
            }
            fields.update({k: v for k, v in overrides.items() if v is not None})
            return WorkflowStep(**fields)
    raise WorkflowTemplateError(f"Unknown agent in workflow template: {agent_id}")


def _parse_step(raw: Any, idx: int, catalog: list[AgentDefinition]) -> WorkflowStep:
    prefix = f"steps[{idx}]"
    if not isinstance(raw, dict):
        raise WorkflowTemplateError(f"Invalid workflow template: step {idx} must be a mapping")

    kind = raw.get("type", "module")
    if kind == "ui":
        return WorkflowStep(type=StepType.UI, text=str(raw.get("text") or ""))
    if kind != "module":
        raise WorkflowTemplateError(f"Invalid workflow template: '{prefix}.type' must be 'module' or 'ui'")

    agent_id = _as_string(raw.get("agentId"), field_name=f"{prefix}.agentId")

    module_raw = raw.get("module")
    module: ModuleMetadata | None = None
    if module_raw is not None:
        if not isinstance(module_raw, dict):
            raise WorkflowTemplateError(f"Invalid workflow template: '{prefix}.module' must be a mapping")
        module = ModuleMetadata(
            id=_as_optional_string(module_raw.get("id"), field_name=f"{prefix}.module.id"),
            behavior=parse_behavior(module_raw.get("behavior"), field_name=f"{prefix}.module.behavior"),
        )

    overrides: dict[str, Any] = {
        "agent_name": _as_optional_string(raw.get("agentName"), field_name=f"{prefix}.agentName"),
        "prompt_path": _as_optional_string(raw.get("promptPath"), field_name=f"{prefix}.promptPath"),
        "model": _as_optional_string(raw.get("model"), field_name=f"{prefix}.model"),
        "engine": _as_optional_string(raw.get("engine"), field_name=f"{prefix}.engine"),
        "execute_once": bool(raw.get("executeOnce", False)),
        "not_completed_fallback": _as_optional_string(
            raw.get("notCompletedFallback"), field_name=f"{prefix}.notCompletedFallback"
        ),
        "module": module,
    }

    if overrides["prompt_path"] is None or overrides["agent_name"] is None:
        return resolve_step(agent_id, catalog, **overrides)

    return WorkflowStep(type=StepType.MODULE, agent_id=agent_id, **overrides)


def load_workflow_template(path: Path | str, catalog: list[AgentDefinition] | None = None) -> WorkflowTemplate:
    """Load a workflow template from YAML.

    Args:
        path: Template file.
        catalog: Agent catalog used to complete partially specified steps.

    Raises:
        WorkflowTemplateError: If the file is unreadable or invalid.
    """
    template_path = Path(path)
    try:
        raw = yaml.safe_load(template_path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise WorkflowTemplateError(f"Unable to read workflow template: {template_path}") from exc
    except yaml.YAMLError as exc:
        raise WorkflowTemplateError(f"Invalid YAML in workflow template: {template_path}") from exc

    if not isinstance(raw, dict):
        raise WorkflowTemplateError("Invalid workflow template: root must be a mapping")

    steps_raw = raw.get("steps")
    if not isinstance(steps_raw, list) or not steps_raw:
        raise WorkflowTemplateError("Invalid workflow template: 'steps' must be a non-empty list")

    steps = [_parse_step(step_raw, idx, catalog or []) for idx, step_raw in enumerate(steps_raw)]
    template = WorkflowTemplate(
        name=str(raw.get("name") or template_path.stem),
        steps=steps,
        sub_agent_ids=_as_string_list(raw.get("subAgentIds"), field_name="subAgentIds"),
    )
    logger.debug(f"Loaded workflow template {template.name} with {len(steps)} steps")
    return template


__all__ = ["load_workflow_template", "parse_behavior", "resolve_step"]
