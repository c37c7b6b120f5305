"""Task records loaded from tasks.json."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

_KNOWN_KEYS = {"id", "name", "phase", "details", "acceptanceCriteria", "done", "dependsOn"}


class TaskOutcome(StrEnum):
    START = "start"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class TaskItem:
    """One task. Keys this class does not model are kept in ``extra``."""

    id: str
    name: str
    phase: str
    details: str = ""
    acceptance_criteria: str | None = None
    done: bool = False
    depends_on: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskItem:
        depends_on = data.get("dependsOn")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            phase=str(data.get("phase") or ""),
            details=str(data.get("details") or ""),
            acceptance_criteria=data.get("acceptanceCriteria"),
            done=data.get("done") is True,
            depends_on=[str(d) for d in depends_on] if isinstance(depends_on, list) else [],
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "name": self.name, "phase": self.phase}
        if self.details:
            d["details"] = self.details
        if self.acceptance_criteria:
            d["acceptanceCriteria"] = self.acceptance_criteria
        d["done"] = self.done
        if self.depends_on:
            d["dependsOn"] = list(self.depends_on)
        d.update(self.extra)
        return d


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    failed_command: str | None = None

    @property
    def message(self) -> str | None:
        if self.ok:
            return None
        if self.failed_command:
            return f"Verification failed: {self.failed_command}"
        return "Verification unavailable"


@dataclass
class TaskRunSummary:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    passes: int = 0


__all__ = ["TaskItem", "TaskOutcome", "TaskRunSummary", "VerificationResult"]
