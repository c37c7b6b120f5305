"""Resume state for workflow runs: .codemachine/template.json.

The tracking file records which template is active, which ``executeOnce``
steps have completed, and which steps were started but never finished:

    {
      "activeTemplate": "default.workflow.yaml",
      "lastUpdated": "2025-01-01T10:00:00+00:00",
      "completedSteps": [0, 1],
      "notCompletedSteps": [2],
      "resumeFromLastStep": true
    }

Every write goes to a temporary file first and is renamed into place with
``os.replace``, so a crash never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from agent_conductor.config import state_dir

logger = logging.getLogger(__name__)

TEMPLATE_TRACKING_FILE = "template.json"


class TemplateTracker:
    """Reads and updates the tracking file under a project's state directory."""

    def __init__(self, cm_root: Path) -> None:
        self.cm_root = cm_root
        self.path = cm_root / TEMPLATE_TRACKING_FILE

    @classmethod
    def for_project(cls, root: Path) -> TemplateTracker:
        return cls(state_dir(root))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read tracking file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        data["lastUpdated"] = datetime.now(timezone.utc).isoformat()
        data.setdefault("resumeFromLastStep", True)
        self.cm_root.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(TEMPLATE_TRACKING_FILE + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        os.replace(str(tmp_path), str(self.path))

    @staticmethod
    def _indices(data: dict[str, Any], key: str) -> list[int]:
        raw = data.get(key) or []
        return sorted({int(i) for i in raw if isinstance(i, int) or str(i).isdigit()})

    # ------------------------------------------------------------------
    # Active template
    # ------------------------------------------------------------------

    def get_active_template(self) -> str | None:
        return self._read().get("activeTemplate")

    def set_active_template(self, name: str) -> bool:
        """Record ``name`` as the active template.

        Switching to a different template discards the progress of the
        previous one.

        Returns:
            True if the template changed.
        """
        data = self._read()
        changed = data.get("activeTemplate") != name
        if changed:
            if data.get("activeTemplate"):
                logger.info(f"Template changed from {data['activeTemplate']} to {name}; resetting progress")
            data["completedSteps"] = []
            data["notCompletedSteps"] = []
        data["activeTemplate"] = name
        self._write(data)
        return changed

    # ------------------------------------------------------------------
    # Completed steps
    # ------------------------------------------------------------------

    def get_completed_steps(self) -> list[int]:
        return self._indices(self._read(), "completedSteps")

    def mark_step_completed(self, index: int) -> None:
        data = self._read()
        completed = set(self._indices(data, "completedSteps"))
        if index in completed:
            return
        completed.add(index)
        data["completedSteps"] = sorted(completed)
        self._write(data)

    def clear_completed_steps(self) -> None:
        data = self._read()
        data["completedSteps"] = []
        self._write(data)

    # ------------------------------------------------------------------
    # Started but not completed
    # ------------------------------------------------------------------

    def get_not_completed_steps(self) -> list[int]:
        return self._indices(self._read(), "notCompletedSteps")

    def mark_step_started(self, index: int) -> None:
        data = self._read()
        pending = set(self._indices(data, "notCompletedSteps"))
        if index in pending:
            return
        pending.add(index)
        data["notCompletedSteps"] = sorted(pending)
        self._write(data)

    def remove_from_not_completed(self, index: int) -> None:
        data = self._read()
        pending = self._indices(data, "notCompletedSteps")
        if index not in pending:
            return
        data["notCompletedSteps"] = [i for i in pending if i != index]
        self._write(data)

    def clear_not_completed(self) -> None:
        data = self._read()
        data["notCompletedSteps"] = []
        self._write(data)

    def get_resume_start_index(self) -> int:
        """Lowest started-but-unfinished index, or 0 when resume is off or nothing is pending."""
        data = self._read()
        if not data.get("resumeFromLastStep", True):
            return 0
        pending = self._indices(data, "notCompletedSteps")
        return pending[0] if pending else 0


__all__ = ["TEMPLATE_TRACKING_FILE", "TemplateTracker"]
