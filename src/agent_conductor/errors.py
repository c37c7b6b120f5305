"""Exception hierarchy shared by all conductor components."""

from __future__ import annotations


class ConductorError(Exception):
    """Base exception for conductor errors."""

    pass


class ConductorConfigError(ConductorError):
    """Raised when .codemachine/config.yaml cannot be parsed or validated."""

    pass


class CoordinationParseError(ConductorError):
    """Raised when a coordination script is malformed."""

    pass


class PlaceholderError(ConductorError):
    """Raised when a required prompt placeholder cannot be loaded."""

    def __init__(self, name: str, path: str, reason: str):
        self.name = name
        self.path = path
        super().__init__(f"Failed to load placeholder {{{name}}} from {path}: {reason}")


class AgentExecutionError(ConductorError):
    """Raised when an agent process fails, exits non-zero, or times out."""

    pass


class EngineSelectionError(ConductorError):
    """Raised when no engine can be selected for a step."""

    pass


class MonitorError(ConductorError):
    """Raised by the agent repository when a read or write fails."""

    pass


class WorkflowTemplateError(ConductorError):
    """Raised when a workflow template is missing or invalid."""

    pass


class WorkflowStepError(ConductorError):
    """Raised when a workflow step fails and the run must terminate."""

    def __init__(self, agent_name: str, cause: BaseException | str):
        self.agent_name = agent_name
        self.cause = cause
        super().__init__(f"{agent_name} failed: {cause}")


class TaskRunnerError(ConductorError):
    """Raised when the task file cannot be read or parsed."""

    pass


__all__ = [
    "AgentExecutionError",
    "ConductorConfigError",
    "ConductorError",
    "CoordinationParseError",
    "EngineSelectionError",
    "MonitorError",
    "PlaceholderError",
    "TaskRunnerError",
    "WorkflowStepError",
    "WorkflowTemplateError",
]
