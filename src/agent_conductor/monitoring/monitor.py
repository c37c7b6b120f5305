"""Agent monitor: lifecycle tracking on top of the agent repository.

The monitor is constructed explicitly and passed to whatever needs it.
Monitoring must never crash its caller: write failures and unknown ids are
logged, not raised. The one exception is ``register``, whose caller cannot
proceed without an id.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path

from agent_conductor.config import state_dir
from agent_conductor.errors import MonitorError
from agent_conductor.monitoring.liveness import LivenessProbe, is_process_alive
from agent_conductor.monitoring.models import AgentNode, AgentRecord, AgentStatus, AgentTelemetry
from agent_conductor.monitoring.repository import AgentRepository

logger = logging.getLogger(__name__)

PROMPT_PREVIEW_LIMIT = 500
TERMINATED_ERROR = "Process terminated unexpectedly"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truncate_prompt(prompt: str) -> str:
    if len(prompt) <= PROMPT_PREVIEW_LIMIT:
        return prompt
    return prompt[:PROMPT_PREVIEW_LIMIT] + "..."


class AgentMonitor:
    """Registry of agent processes with liveness-corrected reads."""

    def __init__(
        self,
        repository: AgentRepository,
        *,
        logs_dir: Path,
        liveness: LivenessProbe = is_process_alive,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.logs_dir = logs_dir
        self._liveness = liveness
        self._clock = clock

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def default_log_path(self, agent_id: int, name: str, started: datetime) -> str:
        safe_name = _UNSAFE_NAME_CHARS.sub("-", name).strip("-") or "agent"
        stamp = started.strftime("%Y-%m-%dT%H-%M-%S")
        return str(self.logs_dir / f"agent-{agent_id}-{safe_name}-{stamp}.log")

    def register(
        self,
        name: str,
        prompt: str,
        *,
        parent_id: int | None = None,
        engine: str | None = None,
        pid: int | None = None,
        log_path: str | None = None,
        engine_provider: str | None = None,
        model_name: str | None = None,
    ) -> int:
        """Register a new running agent.

        Args:
            name: Agent name (catalog id).
            prompt: Prompt sent to the agent; stored truncated.
            parent_id: Id of the spawning agent, if any.
            engine: Engine id the agent runs on.
            pid: Process id, when already known.
            log_path: Explicit log file path; generated when omitted.
            engine_provider: Provider reported by the engine.
            model_name: Model the agent runs with.

        Returns:
            The new agent id.

        Raises:
            MonitorError: If the record cannot be persisted.
        """
        started = self._clock()
        agent_id = self.repository.create_agent(
            name=name,
            prompt=_truncate_prompt(prompt),
            start_time=started,
            log_path=log_path or (lambda new_id: self.default_log_path(new_id, name, started)),
            engine=engine,
            parent_id=parent_id,
            pid=pid,
            engine_provider=engine_provider,
            model_name=model_name,
        )
        logger.debug(f"Registered agent {agent_id} ({name})")
        return agent_id

    def update_pid(self, agent_id: int, pid: int) -> None:
        try:
            if not self.repository.set_pid(agent_id, pid):
                logger.warning(f"Cannot set pid: agent {agent_id} not found")
        except MonitorError as e:
            logger.error(f"Failed to record pid for agent {agent_id}: {e}")

    def update_telemetry(self, agent_id: int, telemetry: AgentTelemetry) -> None:
        try:
            self.repository.save_telemetry(agent_id, telemetry)
        except MonitorError as e:
            logger.error(f"Failed to record telemetry for agent {agent_id}: {e}")

    def complete(self, agent_id: int, telemetry: AgentTelemetry | None = None) -> None:
        """Mark an agent completed; telemetry is only replaced when given."""
        self._finish(agent_id, AgentStatus.COMPLETED, telemetry=telemetry)

    def fail(self, agent_id: int, error: str | BaseException) -> None:
        """Mark an agent failed; any telemetry already recorded is kept."""
        self._finish(agent_id, AgentStatus.FAILED, error=str(error))

    def _finish(
        self,
        agent_id: int,
        status: AgentStatus,
        *,
        telemetry: AgentTelemetry | None = None,
        error: str | None = None,
    ) -> None:
        try:
            record = self.repository.get(agent_id)
            if record is None:
                logger.warning(f"Cannot mark agent {agent_id} {status}: agent not found")
                return
            if record.status.is_terminal:
                logger.warning(f"Agent {agent_id} is already {record.status}; ignoring {status}")
                return
            if telemetry is not None:
                self.repository.save_telemetry(agent_id, telemetry)
            end_time = self._clock()
            self.repository.finish(
                agent_id,
                status=status,
                end_time=end_time,
                duration=self._duration_ms(record, end_time),
                error=error,
            )
        except MonitorError as e:
            logger.error(f"Failed to mark agent {agent_id} {status}: {e}")

    @staticmethod
    def _duration_ms(record: AgentRecord, end_time: datetime) -> int:
        return max(0, int((end_time - record.start_time).total_seconds() * 1000))

    # =========================================================================
    # Liveness correction
    # =========================================================================

    def _correct(self, record: AgentRecord) -> AgentRecord:
        if record.status is not AgentStatus.RUNNING or record.pid is None:
            return record
        if self._liveness(record.pid):
            return record

        end_time = self._clock()
        corrected = record.with_changes(
            status=AgentStatus.FAILED,
            error=TERMINATED_ERROR,
            end_time=end_time,
            duration=self._duration_ms(record, end_time),
        )
        self._schedule_correction(corrected)
        return corrected

    def _schedule_correction(self, corrected: AgentRecord) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._persist_correction(corrected)
        else:
            loop.call_soon(self._persist_correction, corrected)

    def _persist_correction(self, corrected: AgentRecord) -> None:
        assert corrected.end_time is not None and corrected.duration is not None
        try:
            self.repository.finish(
                corrected.id,
                status=AgentStatus.FAILED,
                end_time=corrected.end_time,
                duration=corrected.duration,
                error=TERMINATED_ERROR,
            )
            logger.info(f"Agent {corrected.id} ({corrected.name}) process is gone; marked failed")
        except MonitorError as e:
            logger.error(f"Failed to persist liveness correction for agent {corrected.id}: {e}")

    # =========================================================================
    # Queries
    # =========================================================================

    def _safe_find(self, **filters) -> list[AgentRecord]:
        try:
            return self.repository.find(**filters)
        except MonitorError as e:
            logger.error(f"Failed to read agent registry: {e}")
            return []

    def get_agent(self, agent_id: int) -> AgentRecord | None:
        records = self._safe_find(ids=[agent_id])
        return self._correct(records[0]) if records else None

    def get_all_agents(self) -> list[AgentRecord]:
        return [self._correct(r) for r in self._safe_find()]

    def query_agents(
        self,
        *,
        status: AgentStatus | str | Iterable[AgentStatus | str] | None = None,
        parent_id: int | None = None,
        name: str | None = None,
    ) -> list[AgentRecord]:
        """Filter agents; all given filters must match.

        Status filtering applies to the liveness-corrected view, so a dead
        "running" agent matches ``failed``.
        """
        if status is None:
            wanted: set[str] | None = None
        elif isinstance(status, str):
            wanted = {str(status)}
        else:
            wanted = {str(s) for s in status}

        records = [self._correct(r) for r in self._safe_find(parent_id=parent_id, name=name)]
        if wanted is None:
            return records
        return [r for r in records if str(r.status) in wanted]

    def get_root_agents(self) -> list[AgentRecord]:
        return [self._correct(r) for r in self._safe_find(roots_only=True)]

    def get_children(self, agent_id: int) -> list[AgentRecord]:
        return [self._correct(r) for r in self._safe_find(parent_id=agent_id)]

    # =========================================================================
    # Hierarchy views
    # =========================================================================

    @staticmethod
    def _build_nodes(records: list[AgentRecord]) -> dict[int, AgentNode]:
        nodes = {r.id: AgentNode(agent=r) for r in records}
        for record in records:
            if record.parent_id is not None and record.parent_id in nodes:
                nodes[record.parent_id].children.append(nodes[record.id])
        return nodes

    def build_agent_tree(self) -> list[AgentNode]:
        """Forest of all agents; roots are records without a parent."""
        records = self.get_all_agents()
        nodes = self._build_nodes(records)
        return [nodes[r.id] for r in records if r.parent_id is None]

    def get_full_subtree(self, agent_id: int) -> AgentNode | None:
        records = self.get_all_agents()
        return self._build_nodes(records).get(agent_id)

    def get_agents_by_root(self) -> dict[int, list[AgentRecord]]:
        """Map each root id to the flattened records of its tree, root first."""
        grouped: dict[int, list[AgentRecord]] = {}
        for root in self.build_agent_tree():
            flat: list[AgentRecord] = []
            stack = [root]
            while stack:
                node = stack.pop(0)
                flat.append(node.agent)
                stack.extend(node.children)
            grouped[root.agent.id] = flat
        return grouped

    def clear_descendants(self, agent_id: int) -> int:
        """Delete every record below ``agent_id``; the agent itself is kept.

        Returns:
            Number of records removed.
        """
        try:
            children: dict[int, list[int]] = {}
            for child_id, parent_id in self.repository.edges():
                if parent_id is not None:
                    children.setdefault(int(parent_id), []).append(child_id)

            doomed: list[int] = []
            queue = list(children.get(agent_id, []))
            while queue:
                current = queue.pop(0)
                doomed.append(current)
                queue.extend(children.get(current, []))

            removed = self.repository.delete(doomed)
        except MonitorError as e:
            logger.error(f"Failed to clear descendants of agent {agent_id}: {e}")
            return 0

        if removed:
            logger.info(f"Cleared {removed} descendant(s) of agent {agent_id}")
        return removed

    def close(self) -> None:
        self.repository.close()


def open_monitor(root: Path, *, liveness: LivenessProbe = is_process_alive) -> AgentMonitor:
    """Open the project-local registry under .codemachine/."""
    base = state_dir(root)
    repository = AgentRepository(base / "agents" / "registry.db")
    return AgentMonitor(repository, logs_dir=base / "logs", liveness=liveness)


__all__ = ["AgentMonitor", "PROMPT_PREVIEW_LIMIT", "TERMINATED_ERROR", "open_monitor"]
