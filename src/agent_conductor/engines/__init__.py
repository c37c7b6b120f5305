"""Engines: adapter protocol, engine selection and agent execution.

Concrete engines shell out to external coding-agent binaries. The package
ships a generic CommandEngine; anything implementing EngineAdapter can be
registered in an EngineRegistry.
"""

from agent_conductor.engines.base import (
    CancellationToken,
    EngineAdapter,
    EngineRunOptions,
    EngineRunResult,
)
from agent_conductor.engines.command import CommandEngine
from agent_conductor.engines.runner import AgentRun, AgentRunner, AgentRunStatus, execute_agent
from agent_conductor.engines.selection import AuthCache, EngineRegistry, select_engine

__all__ = [
    "AgentRun",
    "AgentRunStatus",
    "AgentRunner",
    "AuthCache",
    "CancellationToken",
    "CommandEngine",
    "EngineAdapter",
    "EngineRegistry",
    "EngineRunOptions",
    "EngineRunResult",
    "execute_agent",
    "select_engine",
]
