"""The behavior side channel: .codemachine/memory/behavior.json.

Agents write a small JSON document to steer the workflow:

    {"action": "loop" | "checkpoint" | "continue" | "trigger" | "stop",
     "reason": "...", "triggerAgentId": "..."}

The runner resets it to ``continue`` before every step.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from agent_conductor.config import state_dir

logger = logging.getLogger(__name__)

BEHAVIOR_FILE_NAME = "behavior.json"


class BehaviorActionType(StrEnum):
    LOOP = "loop"
    CHECKPOINT = "checkpoint"
    CONTINUE = "continue"
    TRIGGER = "trigger"
    STOP = "stop"


@dataclass(frozen=True)
class BehaviorAction:
    action: BehaviorActionType
    reason: str | None = None
    trigger_agent_id: str | None = None


def behavior_file_path(cwd: Path) -> Path:
    return state_dir(cwd) / "memory" / BEHAVIOR_FILE_NAME


class BehaviorFile:
    """Reads and resets the behavior side channel."""

    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def for_project(cls, cwd: Path) -> BehaviorFile:
        return cls(behavior_file_path(cwd))

    def reset(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"action": "continue"}, indent=2), encoding="utf-8")

    def read(self) -> BehaviorAction | None:
        """Return the current action, or None when absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to parse behavior file {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring behavior file {self.path}: expected an object")
            return None
        try:
            action = BehaviorActionType(str(data.get("action", "")))
        except ValueError:
            logger.warning(f"Unknown behavior action {data.get('action')!r} in {self.path}")
            return None
        return BehaviorAction(
            action=action,
            reason=data.get("reason"),
            trigger_agent_id=data.get("triggerAgentId"),
        )


__all__ = ["BehaviorAction", "BehaviorActionType", "BehaviorFile", "behavior_file_path"]
