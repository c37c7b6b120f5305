from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from agent_conductor.engines.base import CancellationToken
from agent_conductor.engines.runner import AgentRun, AgentRunStatus
from agent_conductor.monitoring.monitor import AgentMonitor
from agent_conductor.monitoring.repository import AgentRepository


@pytest.fixture()
def monitor(tmp_path: Path) -> Iterator[AgentMonitor]:
    """In-memory registry whose agents are always considered alive."""
    repository = AgentRepository(":memory:")
    yield AgentMonitor(repository, logs_dir=tmp_path / "logs", liveness=lambda pid: True)
    repository.close()


class FakeRunner:
    """Stands in for AgentRunner: records calls and registers agents with the monitor.

    ``outputs`` maps agent names to their output; names in ``failing`` raise,
    names in ``cancelled`` return a cancelled run.
    """

    def __init__(
        self,
        monitor: AgentMonitor,
        outputs: dict[str, str] | None = None,
        *,
        failing: set[str] | None = None,
        cancelled: set[str] | None = None,
    ) -> None:
        self.monitor = monitor
        self.outputs = outputs or {}
        self.failing = failing or set()
        self.cancelled = cancelled or set()
        self.calls: list[tuple[str, str]] = []

    async def run(
        self,
        name: str,
        prompt: str,
        *,
        parent_id: int | None = None,
        cancel: CancellationToken | None = None,
        on_output: Callable[[str], None] | None = None,
        **_: object,
    ) -> AgentRun:
        self.calls.append((name, prompt))
        agent_id = self.monitor.register(name, prompt, parent_id=parent_id)
        if name in self.failing:
            self.monitor.fail(agent_id, f"{name} exploded")
            raise RuntimeError(f"{name} exploded")
        output = self.outputs.get(name, f"{name} done")
        if on_output is not None:
            on_output(output)
        if name in self.cancelled:
            self.monitor.fail(agent_id, "Cancelled: test")
            return AgentRun(agent_id, AgentRunStatus.CANCELLED, output)
        self.monitor.complete(agent_id)
        return AgentRun(agent_id, AgentRunStatus.COMPLETED, output)


@pytest.fixture()
def fake_runner_factory(monitor: AgentMonitor) -> Callable[..., FakeRunner]:
    def _factory(outputs: dict[str, str] | None = None, **kwargs: set[str]) -> FakeRunner:
        return FakeRunner(monitor, outputs, **kwargs)

    return _factory
