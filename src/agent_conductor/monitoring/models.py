"""Agent registry records.

An AgentRecord is created at registration (before the process starts) and
moves exactly once from ``running`` to ``completed`` or ``failed``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any


class AgentStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not AgentStatus.RUNNING


@dataclass(frozen=True)
class AgentTelemetry:
    """Token and cost usage reported by an engine."""

    tokens_in: int = 0
    tokens_out: int = 0
    cached: int = 0
    cost: float | None = None
    cache_creation_tokens: int | None = None
    cache_read_tokens: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "tokensIn": self.tokens_in,
            "tokensOut": self.tokens_out,
            "cached": self.cached,
        }
        if self.cost is not None:
            d["cost"] = self.cost
        if self.cache_creation_tokens is not None:
            d["cacheCreationTokens"] = self.cache_creation_tokens
        if self.cache_read_tokens is not None:
            d["cacheReadTokens"] = self.cache_read_tokens
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentTelemetry:
        return cls(
            tokens_in=int(data.get("tokensIn", 0) or 0),
            tokens_out=int(data.get("tokensOut", 0) or 0),
            cached=int(data.get("cached", 0) or 0),
            cost=data.get("cost"),
            cache_creation_tokens=data.get("cacheCreationTokens"),
            cache_read_tokens=data.get("cacheReadTokens"),
        )


@dataclass(frozen=True)
class AgentRecord:
    """Durable lifecycle record for one agent process.

    ``duration`` is in milliseconds. ``children`` is derived from the
    ``parent_id`` of other records and never stored.
    """

    id: int
    name: str
    status: AgentStatus
    start_time: datetime
    prompt: str
    log_path: str
    engine: str | None = None
    parent_id: int | None = None
    pid: int | None = None
    end_time: datetime | None = None
    duration: int | None = None
    telemetry: AgentTelemetry | None = None
    children: list[int] = field(default_factory=list)
    error: str | None = None
    engine_provider: str | None = None
    model_name: str | None = None

    def with_changes(self, **changes: Any) -> AgentRecord:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "status": str(self.status),
            "startTime": self.start_time.isoformat(),
            "prompt": self.prompt,
            "logPath": self.log_path,
            "children": list(self.children),
        }
        optional = {
            "engine": self.engine,
            "parentId": self.parent_id,
            "pid": self.pid,
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "telemetry": self.telemetry.to_dict() if self.telemetry else None,
            "error": self.error,
            "engineProvider": self.engine_provider,
            "modelName": self.model_name,
        }
        d.update({k: v for k, v in optional.items() if v is not None})
        return d


@dataclass
class AgentNode:
    """An agent with its descendants, as built by the monitor's tree views."""

    agent: AgentRecord
    children: list[AgentNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent": self.agent.to_dict(),
            "children": [child.to_dict() for child in self.children],
        }
