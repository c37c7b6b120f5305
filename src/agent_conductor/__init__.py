"""Agent conductor: orchestration engine for AI coding-agent processes.

This package coordinates multiple independent coding-agent processes to
accomplish a larger task.

Core Components:
    - Coordinator: DSL parser and parallel/sequential plan executor
    - Monitoring: Durable agent registry with liveness correction
    - Engines: Adapter protocol, engine selection and agent execution
    - Workflows: Step state machine with loop/checkpoint/trigger behaviors
    - Tasks: Dependency-ordered task runner with shell verification

Usage:
    from agent_conductor import parse_script, AgentMonitor, AgentRepository

    plan = parse_script("planner 'draft' && coder[input:{plan}] 'build it'")
    monitor = AgentMonitor(AgentRepository(db_path), logs_dir=logs_dir)
"""

from agent_conductor.coordinator.models import (
    AgentCommand,
    AgentExecutionResult,
    CommandGroup,
    CoordinationMode,
    CoordinationPlan,
    CoordinationResult,
)
from agent_conductor.coordinator.parser import parse_script
from agent_conductor.errors import ConductorError
from agent_conductor.monitoring.models import AgentRecord, AgentStatus
from agent_conductor.monitoring.monitor import AgentMonitor
from agent_conductor.monitoring.repository import AgentRepository

__version__ = "0.4.0"

__all__ = [
    # Coordination
    "AgentCommand",
    "AgentExecutionResult",
    "CommandGroup",
    "CoordinationMode",
    "CoordinationPlan",
    "CoordinationResult",
    "parse_script",
    # Monitoring
    "AgentMonitor",
    "AgentRecord",
    "AgentRepository",
    "AgentStatus",
    # Exceptions
    "ConductorError",
]
