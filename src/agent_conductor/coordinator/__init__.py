"""Coordination: command DSL parsing and parallel/sequential plan execution."""

from agent_conductor.coordinator.executor import CoordinationExecutor, apply_tail
from agent_conductor.coordinator.inputs import build_composite_prompt, load_input_files
from agent_conductor.coordinator.models import (
    AgentCommand,
    AgentExecutionResult,
    CommandGroup,
    CoordinationMode,
    CoordinationPlan,
    CoordinationResult,
)
from agent_conductor.coordinator.parser import format_plan, parse_command, parse_script
from agent_conductor.coordinator.service import CoordinationService

__all__ = [
    "AgentCommand",
    "AgentExecutionResult",
    "CommandGroup",
    "CoordinationExecutor",
    "CoordinationMode",
    "CoordinationPlan",
    "CoordinationResult",
    "CoordinationService",
    "apply_tail",
    "build_composite_prompt",
    "format_plan",
    "load_input_files",
    "parse_command",
    "parse_script",
]
