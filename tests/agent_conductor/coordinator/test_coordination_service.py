"""Tests for the coordination service and its console report."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
from rich.console import Console

from agent_conductor.config import AgentDefinition, ConductorConfig
from agent_conductor.coordinator.service import CoordinationService
from agent_conductor.errors import CoordinationParseError


def _console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, width=120, color_system=None), buffer


def _service(tmp_path: Path, monitor, runner, console: Console) -> CoordinationService:
    (tmp_path / "prompts").mkdir(exist_ok=True)
    (tmp_path / "prompts" / "coder.md").write_text("You write code.", encoding="utf-8")
    config = ConductorConfig(agents=[AgentDefinition(id="coder", name="Coder", prompt_path="prompts/coder.md")])
    return CoordinationService(tmp_path, config=config, monitor=monitor, runner=runner, console=console)


@pytest.mark.asyncio
async def test_dry_run_prints_plan_without_running(tmp_path: Path, monitor, fake_runner_factory) -> None:
    console, buffer = _console()
    runner = fake_runner_factory()
    result = await _service(tmp_path, monitor, runner, console).run("coder 'x' & coder 'y'", dry_run=True)

    assert result is None
    assert runner.calls == []
    assert "Coordination Plan" in buffer.getvalue()
    assert "parallel" in buffer.getvalue()


@pytest.mark.asyncio
async def test_run_uses_catalog_template(tmp_path: Path, monitor, fake_runner_factory) -> None:
    console, buffer = _console()
    runner = fake_runner_factory({"coder": "\n".join(f"line {i}" for i in range(10))})
    result = await _service(tmp_path, monitor, runner, console).run("coder[tail:2] 'add tests'")

    assert result is not None and result.success
    assert runner.calls == [("coder", "You write code.\n\n[REQUEST]\nadd tests")]
    output = buffer.getvalue()
    assert "coder (last 2 lines)" in output
    assert "line 9" in output
    assert "COORDINATION SUCCEEDED" in output


@pytest.mark.asyncio
async def test_unknown_agent_fails_without_running(tmp_path: Path, monitor, fake_runner_factory) -> None:
    console, buffer = _console()
    runner = fake_runner_factory()
    result = await _service(tmp_path, monitor, runner, console).run("ghost 'boo'")

    assert result is not None and not result.success
    assert runner.calls == []
    assert "COORDINATION FAILED" in buffer.getvalue()


@pytest.mark.asyncio
async def test_parse_errors_propagate(tmp_path: Path, monitor, fake_runner_factory) -> None:
    console, _ = _console()
    with pytest.raises(CoordinationParseError):
        await _service(tmp_path, monitor, fake_runner_factory(), console).run("")
