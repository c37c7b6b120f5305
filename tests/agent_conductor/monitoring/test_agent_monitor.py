"""Tests for the agent registry and its liveness-corrected views."""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from agent_conductor.monitoring.liveness import is_process_alive
from agent_conductor.monitoring.models import AgentStatus, AgentTelemetry
from agent_conductor.monitoring.monitor import (
    PROMPT_PREVIEW_LIMIT,
    TERMINATED_ERROR,
    AgentMonitor,
    open_monitor,
)
from agent_conductor.monitoring.repository import AgentRepository


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _monitor(tmp_path: Path, *, alive: bool = True, clock=None) -> AgentMonitor:
    kwargs = {"clock": clock} if clock is not None else {}
    return AgentMonitor(
        AgentRepository(":memory:"),
        logs_dir=tmp_path / "logs",
        liveness=lambda pid: alive,
        **kwargs,
    )


class TestRegistration:
    def test_ids_are_sequential(self, monitor: AgentMonitor) -> None:
        first = monitor.register("a", "p")
        second = monitor.register("b", "p")
        assert second == first + 1

    def test_ids_increase_across_interleaved_completions(self, monitor: AgentMonitor) -> None:
        ids: list[int] = []
        for i in range(9):
            ids.append(monitor.register(f"agent-{i}", "p"))
            if i % 3 == 0:
                monitor.complete(ids[-1])
            elif i % 3 == 1:
                monitor.fail(ids[-1], "boom")

        assert len(set(ids)) == len(ids)
        assert all(later > earlier for earlier, later in zip(ids, ids[1:]))
        statuses = [monitor.get_agent(agent_id).status for agent_id in ids]
        assert statuses == [AgentStatus.COMPLETED, AgentStatus.FAILED, AgentStatus.RUNNING] * 3

    def test_ids_are_never_reused_after_delete(self, monitor: AgentMonitor) -> None:
        root = monitor.register("root", "p")
        child = monitor.register("child", "p", parent_id=root)
        assert monitor.clear_descendants(root) == 1

        newer = monitor.register("again", "p")
        assert newer > child

    def test_new_record_is_running(self, monitor: AgentMonitor) -> None:
        agent_id = monitor.register("writer", "draft", engine="claude", model_name="opus")
        record = monitor.get_agent(agent_id)
        assert record is not None
        assert record.status is AgentStatus.RUNNING
        assert record.engine == "claude"
        assert record.model_name == "opus"
        assert record.end_time is None

    def test_prompt_is_truncated(self, monitor: AgentMonitor) -> None:
        agent_id = monitor.register("writer", "x" * (PROMPT_PREVIEW_LIMIT + 50))
        record = monitor.get_agent(agent_id)
        assert record is not None
        assert record.prompt == "x" * PROMPT_PREVIEW_LIMIT + "..."

    def test_default_log_path_includes_id_and_name(self, monitor: AgentMonitor) -> None:
        agent_id = monitor.register("code reviewer", "p")
        record = monitor.get_agent(agent_id)
        assert record is not None
        name = Path(record.log_path).name
        assert name.startswith(f"agent-{agent_id}-code-reviewer-")
        assert name.endswith(".log")

    def test_explicit_log_path_is_kept(self, monitor: AgentMonitor, tmp_path: Path) -> None:
        path = str(tmp_path / "custom.log")
        agent_id = monitor.register("a", "p", log_path=path)
        record = monitor.get_agent(agent_id)
        assert record is not None
        assert record.log_path == path

    def test_file_backed_registry_persists(self, tmp_path: Path) -> None:
        first = open_monitor(tmp_path)
        agent_id = first.register("a", "p")
        first.complete(agent_id)
        first.close()

        second = open_monitor(tmp_path)
        record = second.get_agent(agent_id)
        assert record is not None
        assert record.status is AgentStatus.COMPLETED
        assert (tmp_path / ".codemachine" / "agents" / "registry.db").exists()
        second.close()


class TestTransitions:
    def test_complete_sets_end_time_and_duration(self, tmp_path: Path) -> None:
        clock = FakeClock()
        monitor = _monitor(tmp_path, clock=clock)
        agent_id = monitor.register("a", "p")
        clock.advance(2.5)
        monitor.complete(agent_id, AgentTelemetry(tokens_in=10, tokens_out=5, cost=0.01))

        record = monitor.get_agent(agent_id)
        assert record is not None
        assert record.status is AgentStatus.COMPLETED
        assert record.end_time == clock.now
        assert record.duration == 2500
        assert record.telemetry == AgentTelemetry(tokens_in=10, tokens_out=5, cost=0.01)

    def test_fail_keeps_existing_telemetry(self, monitor: AgentMonitor) -> None:
        agent_id = monitor.register("a", "p")
        monitor.update_telemetry(agent_id, AgentTelemetry(tokens_in=3))
        monitor.fail(agent_id, RuntimeError("boom"))

        record = monitor.get_agent(agent_id)
        assert record is not None
        assert record.status is AgentStatus.FAILED
        assert record.error == "boom"
        assert record.telemetry is not None
        assert record.telemetry.tokens_in == 3

    def test_terminal_status_is_final(self, monitor: AgentMonitor) -> None:
        agent_id = monitor.register("a", "p")
        monitor.complete(agent_id)
        monitor.fail(agent_id, "late failure")

        record = monitor.get_agent(agent_id)
        assert record is not None
        assert record.status is AgentStatus.COMPLETED
        assert record.error is None

    def test_unknown_agent_is_logged_not_raised(
        self, monitor: AgentMonitor, caplog: pytest.LogCaptureFixture
    ) -> None:
        monitor.complete(999)
        monitor.update_pid(999, 1234)
        assert "999" in caplog.text
        assert monitor.get_agent(999) is None


class TestLivenessCorrection:
    def test_dead_running_agent_reads_as_failed(self, tmp_path: Path) -> None:
        monitor = _monitor(tmp_path, alive=False)
        agent_id = monitor.register("a", "p", pid=4242)

        record = monitor.get_agent(agent_id)
        assert record is not None
        assert record.status is AgentStatus.FAILED
        assert record.error == TERMINATED_ERROR
        assert record.end_time is not None

    def test_correction_is_persisted(self, tmp_path: Path) -> None:
        repository = AgentRepository(":memory:")
        dead = AgentMonitor(repository, logs_dir=tmp_path, liveness=lambda pid: False)
        agent_id = dead.register("a", "p", pid=4242)
        dead.get_agent(agent_id)

        stored = repository.get(agent_id)
        assert stored is not None
        assert stored.status is AgentStatus.FAILED
        assert stored.error == TERMINATED_ERROR

    @pytest.mark.asyncio
    async def test_correction_inside_event_loop_is_deferred(self, tmp_path: Path) -> None:
        repository = AgentRepository(":memory:")
        dead = AgentMonitor(repository, logs_dir=tmp_path, liveness=lambda pid: False)
        agent_id = dead.register("a", "p", pid=4242)

        assert dead.get_agent(agent_id).status is AgentStatus.FAILED
        await asyncio.sleep(0)
        assert repository.get(agent_id).status is AgentStatus.FAILED

    def test_agents_without_pid_are_not_probed(self, tmp_path: Path) -> None:
        monitor = _monitor(tmp_path, alive=False)
        agent_id = monitor.register("a", "p")
        assert monitor.get_agent(agent_id).status is AgentStatus.RUNNING

    def test_status_filter_uses_corrected_view(self, tmp_path: Path) -> None:
        monitor = _monitor(tmp_path, alive=False)
        dead = monitor.register("dead", "p", pid=4242)
        monitor.register("pending", "p")

        assert [r.id for r in monitor.query_agents(status=AgentStatus.FAILED)] == [dead]
        assert [r.name for r in monitor.query_agents(status="running")] == ["pending"]

    def test_probe_sees_current_process(self) -> None:
        assert is_process_alive(os.getpid()) is True
        assert is_process_alive(0) is False
        assert is_process_alive(-5) is False


class TestHierarchy:
    def test_children_and_roots(self, monitor: AgentMonitor) -> None:
        root = monitor.register("root", "p")
        a = monitor.register("a", "p", parent_id=root)
        b = monitor.register("b", "p", parent_id=root)
        other = monitor.register("other", "p")

        assert [r.id for r in monitor.get_root_agents()] == [root, other]
        assert [r.id for r in monitor.get_children(root)] == [a, b]
        assert monitor.get_agent(root).children == [a, b]

    def test_query_filters_combine(self, monitor: AgentMonitor) -> None:
        root = monitor.register("root", "p")
        first = monitor.register("worker", "p", parent_id=root)
        monitor.register("worker", "p")
        monitor.complete(first)

        matches = monitor.query_agents(status=["completed"], parent_id=root, name="worker")
        assert [r.id for r in matches] == [first]

    def test_tree_views(self, monitor: AgentMonitor) -> None:
        root = monitor.register("root", "p")
        child = monitor.register("child", "p", parent_id=root)
        grandchild = monitor.register("grandchild", "p", parent_id=child)
        lone = monitor.register("lone", "p")

        forest = monitor.build_agent_tree()
        assert [node.agent.id for node in forest] == [root, lone]
        assert forest[0].children[0].children[0].agent.id == grandchild

        subtree = monitor.get_full_subtree(child)
        assert subtree is not None
        assert [n.agent.id for n in subtree.children] == [grandchild]
        assert monitor.get_full_subtree(12345) is None

        grouped = monitor.get_agents_by_root()
        assert [r.id for r in grouped[root]] == [root, child, grandchild]
        assert [r.id for r in grouped[lone]] == [lone]

    def test_clear_descendants_keeps_the_agent(self, monitor: AgentMonitor) -> None:
        root = monitor.register("root", "p")
        child = monitor.register("child", "p", parent_id=root)
        monitor.register("grandchild", "p", parent_id=child)
        monitor.update_telemetry(child, AgentTelemetry(tokens_in=1))
        unrelated = monitor.register("unrelated", "p")

        assert monitor.clear_descendants(root) == 2
        assert [r.id for r in monitor.get_all_agents()] == [root, unrelated]
        assert monitor.get_agent(root).children == []

    def test_record_serialization_omits_missing_fields(self, monitor: AgentMonitor) -> None:
        agent_id = monitor.register("a", "p")
        data = monitor.get_agent(agent_id).to_dict()
        assert data["status"] == "running"
        assert "endTime" not in data
        assert "parentId" not in data
