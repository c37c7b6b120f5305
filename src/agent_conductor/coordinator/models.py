"""Data types for coordination plans and their results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class CoordinationMode(StrEnum):
    """How the commands of a group are scheduled."""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


@dataclass
class AgentCommand:
    """A single agent invocation parsed from a coordination script."""

    name: str
    prompt: str | None = None
    input: list[str] | None = None
    tail: int | None = None
    options: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name}
        if self.prompt is not None:
            d["prompt"] = self.prompt
        if self.input:
            d["input"] = list(self.input)
        if self.tail is not None:
            d["tail"] = self.tail
        if self.options:
            d["options"] = dict(self.options)
        return d


@dataclass
class CommandGroup:
    mode: CoordinationMode
    commands: list[AgentCommand] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"mode": str(self.mode), "commands": [c.to_dict() for c in self.commands]}


@dataclass
class CoordinationPlan:
    """Ordered command groups; groups always run one after another."""

    groups: list[CommandGroup] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"groups": [g.to_dict() for g in self.groups]}


@dataclass(frozen=True)
class AgentExecutionResult:
    """Outcome of one command. Immutable once produced."""

    name: str
    agent_id: int
    success: bool
    prompt: str | None = None
    input: tuple[str, ...] | None = None
    output: str | None = None
    error: str | None = None
    tail_applied: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "agentId": self.agent_id,
            "success": self.success,
        }
        if self.prompt is not None:
            d["prompt"] = self.prompt
        if self.input:
            d["input"] = list(self.input)
        if self.output is not None:
            d["output"] = self.output
        if self.error is not None:
            d["error"] = self.error
        if self.tail_applied is not None:
            d["tailApplied"] = self.tail_applied
        return d


@dataclass(frozen=True)
class CoordinationResult:
    parent_id: int | None
    results: list[AgentExecutionResult]
    success: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "parentId": self.parent_id,
            "results": [r.to_dict() for r in self.results],
            "success": self.success,
        }
