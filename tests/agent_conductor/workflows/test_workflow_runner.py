"""Tests for the workflow step driver."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from agent_conductor.config import AgentDefinition, ConductorConfig, PlaceholderConfig
from agent_conductor.engines.base import CancellationToken
from agent_conductor.errors import WorkflowStepError
from agent_conductor.workflows.behaviors.behavior_file import behavior_file_path
from agent_conductor.workflows.models import (
    CheckpointAction,
    CheckpointBehavior,
    LoopBehavior,
    ModuleMetadata,
    StepOutcome,
    StepStatus,
    StepType,
    TriggerBehavior,
    WorkflowStep,
    WorkflowTemplate,
)
from agent_conductor.workflows.runner import AgentStepExecutor, WorkflowRunner
from agent_conductor.workflows.tracking import TemplateTracker

CATALOG = [
    AgentDefinition(id="recover", name="Recover", prompt_path="prompts/recover.md"),
    AgentDefinition(id="notify", name="Notify", prompt_path="prompts/notify.md"),
]


def _step(agent_id: str, **kwargs) -> WorkflowStep:
    return WorkflowStep(type=StepType.MODULE, agent_id=agent_id, agent_name=agent_id.upper(), **kwargs)


def _behavior_step(agent_id: str, behavior, **kwargs) -> WorkflowStep:
    return _step(agent_id, module=ModuleMetadata(id=f"{agent_id}-module", behavior=behavior), **kwargs)


class ScriptedExecutor:
    """Step executor with per-agent output queues.

    Each call pops the next output for the agent (the last one repeats).
    Agents in ``failing`` raise; agents in ``cancelling`` wait for the
    cancellation token; ``behaviors`` maps an agent to a behavior.json
    document written during its first run.
    """

    def __init__(
        self,
        cwd: Path,
        outputs: dict[str, list[str]] | None = None,
        *,
        failing: set[str] | None = None,
        cancelling: set[str] | None = None,
        behaviors: dict[str, dict] | None = None,
    ) -> None:
        self.cwd = cwd
        self.outputs = {k: list(v) for k, v in (outputs or {}).items()}
        self.failing = failing or set()
        self.cancelling = cancelling or set()
        self.behaviors = dict(behaviors or {})
        self.calls: list[str] = []

    async def __call__(self, step: WorkflowStep, cancel: CancellationToken) -> StepOutcome:
        self.calls.append(step.agent_id)
        if step.agent_id in self.failing:
            raise RuntimeError(f"{step.agent_id} crashed")
        if step.agent_id in self.cancelling:
            await cancel.wait()
            return StepOutcome(output="", cancelled=True)
        behavior = self.behaviors.pop(step.agent_id, None)
        if behavior is not None:
            behavior_file_path(self.cwd).write_text(json.dumps(behavior))
        queue = self.outputs.get(step.agent_id)
        if not queue:
            return StepOutcome(output=f"{step.agent_id} done")
        return StepOutcome(output=queue.pop(0) if len(queue) > 1 else queue[0])


def _runner(tmp_path: Path, steps: list[WorkflowStep], executor, **kwargs) -> WorkflowRunner:
    template = WorkflowTemplate(name="test.workflow", steps=steps)
    return WorkflowRunner(template, cwd=tmp_path, step_executor=executor, agents=CATALOG, **kwargs)


class TestLinearRuns:
    @pytest.mark.asyncio
    async def test_all_steps_complete_in_order(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(tmp_path)
        steps = [WorkflowStep(type=StepType.UI, text="Phase 1"), _step("a"), _step("b")]
        result = await _runner(tmp_path, steps, executor).run()

        assert executor.calls == ["a", "b"]
        assert not result.stopped
        assert [s.status for s in result.steps] == [StepStatus.SKIPPED, StepStatus.COMPLETED, StepStatus.COMPLETED]
        assert result.steps[0].skip_reason is None
        assert result.steps[2].output == "b done"

        tracker = TemplateTracker.for_project(tmp_path)
        assert tracker.get_active_template() == "test.workflow"
        assert tracker.get_not_completed_steps() == []

    @pytest.mark.asyncio
    async def test_failure_stops_run_and_leaves_step_unfinished(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(tmp_path, failing={"b"})
        runner = _runner(tmp_path, [_step("a"), _step("b"), _step("c")], executor)

        with pytest.raises(WorkflowStepError, match="B failed: b crashed"):
            await runner.run()

        assert executor.calls == ["a", "b"]
        assert runner.states[1].status is StepStatus.RUNNING
        assert TemplateTracker.for_project(tmp_path).get_not_completed_steps() == [1]

    @pytest.mark.asyncio
    async def test_behavior_file_is_reset_before_each_step(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(tmp_path)
        await _runner(tmp_path, [_step("a")], executor).run()
        assert json.loads(behavior_file_path(tmp_path).read_text()) == {"action": "continue"}


class TestResume:
    @pytest.mark.asyncio
    async def test_execute_once_steps_are_skipped_on_rerun(self, tmp_path: Path) -> None:
        steps = [_step("setup", execute_once=True), _step("work")]
        first = ScriptedExecutor(tmp_path)
        await _runner(tmp_path, steps, first).run()

        second = ScriptedExecutor(tmp_path)
        result = await _runner(tmp_path, steps, second).run()

        assert second.calls == ["work"]
        assert result.steps[0].status is StepStatus.SKIPPED
        assert result.steps[0].skip_reason == "SETUP skipped (already completed)."
        assert TemplateTracker.for_project(tmp_path).get_completed_steps() == [0]

    @pytest.mark.asyncio
    async def test_unfinished_step_resumes_with_fallback(self, tmp_path: Path) -> None:
        tracker = TemplateTracker.for_project(tmp_path)
        tracker.set_active_template("test.workflow")
        tracker.mark_step_started(1)

        executor = ScriptedExecutor(tmp_path)
        steps = [_step("a"), _step("b", not_completed_fallback="recover"), _step("c")]
        result = await _runner(tmp_path, steps, executor).run()

        assert executor.calls == ["recover", "b", "c"]
        assert result.steps[0].status is StepStatus.PENDING
        assert tracker.get_not_completed_steps() == []

    @pytest.mark.asyncio
    async def test_resume_is_ignored_after_template_change(self, tmp_path: Path) -> None:
        tracker = TemplateTracker.for_project(tmp_path)
        tracker.set_active_template("other.workflow")
        tracker.mark_step_started(1)

        executor = ScriptedExecutor(tmp_path)
        await _runner(tmp_path, [_step("a"), _step("b", not_completed_fallback="recover")], executor).run()
        assert executor.calls == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failing_fallback_ends_the_run(self, tmp_path: Path) -> None:
        tracker = TemplateTracker.for_project(tmp_path)
        tracker.set_active_template("test.workflow")
        tracker.mark_step_started(0)

        executor = ScriptedExecutor(tmp_path, failing={"recover"})
        runner = _runner(tmp_path, [_step("a", not_completed_fallback="recover")], executor)
        with pytest.raises(WorkflowStepError) as exc_info:
            await runner.run()
        assert exc_info.value.agent_name == "Recover"
        assert executor.calls == ["recover"]

    @pytest.mark.asyncio
    async def test_unknown_fallback_agent(self, tmp_path: Path) -> None:
        tracker = TemplateTracker.for_project(tmp_path)
        tracker.set_active_template("test.workflow")
        tracker.mark_step_started(0)

        runner = _runner(tmp_path, [_step("a", not_completed_fallback="ghost")], ScriptedExecutor(tmp_path))
        with pytest.raises(WorkflowStepError, match="Fallback agent not found: ghost"):
            await runner.run()


class TestLoops:
    @pytest.mark.asyncio
    async def test_loop_repeats_until_cap(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(tmp_path, {"review": ["LOOP"]})
        steps = [_step("build"), _behavior_step("review", LoopBehavior(trigger="LOOP", max_iterations=2))]
        runner = _runner(tmp_path, steps, executor)
        result = await runner.run()

        assert executor.calls == ["build", "review", "build", "review", "build", "review"]
        assert all(s.status is StepStatus.COMPLETED for s in result.steps)
        assert runner.loop_counters == {"review-module:1": 0}
        assert runner.active_loop is None

    @pytest.mark.asyncio
    async def test_loop_ends_when_trigger_absent(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(
            tmp_path,
            {"review": ["needs work\nLOOP\n[2025-01-01T10:00:00] tokens used: 99", "approved"]},
        )
        steps = [_step("build"), _behavior_step("review", LoopBehavior(trigger="LOOP"))]
        await _runner(tmp_path, steps, executor).run()
        assert executor.calls == ["build", "review", "build", "review"]

    @pytest.mark.asyncio
    async def test_loop_skip_list_and_steps_back(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(tmp_path, {"check": ["LOOP", "ok"]})
        steps = [
            _step("plan"),
            _step("code"),
            _behavior_step("check", LoopBehavior(trigger="LOOP", steps_back=2, skip=("plan",))),
            _step("ship"),
        ]
        result = await _runner(tmp_path, steps, executor).run()

        assert executor.calls == ["plan", "code", "check", "code", "check", "ship"]
        assert result.steps[0].status is StepStatus.SKIPPED
        assert result.steps[0].skip_reason == "PLAN skipped (loop configuration)."

    @pytest.mark.asyncio
    async def test_side_channel_requests_loop(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(tmp_path, behaviors={"review": {"action": "loop", "reason": "flaky tests"}})
        steps = [_step("build"), _behavior_step("review", LoopBehavior(trigger="NEVER"))]
        await _runner(tmp_path, steps, executor).run()
        assert executor.calls == ["build", "review", "build", "review"]


class TestCheckpoints:
    @pytest.mark.asyncio
    async def test_quit_stops_the_run(self, tmp_path: Path) -> None:
        decisions: list[str | None] = []

        async def _quit(step: WorkflowStep, reason: str | None) -> CheckpointAction:
            decisions.append(reason)
            return CheckpointAction.QUIT

        executor = ScriptedExecutor(tmp_path, {"design": ["draft\nREVIEW"]})
        steps = [_behavior_step("design", CheckpointBehavior(marker="REVIEW")), _step("build")]
        result = await _runner(tmp_path, steps, executor, checkpoint_handler=_quit).run()

        assert result.stopped
        assert executor.calls == ["design"]
        assert decisions == ["output ended with REVIEW"]
        assert result.steps[0].status is StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_gate_waits_for_resume(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(tmp_path, behaviors={"design": {"action": "checkpoint", "reason": "look"}})
        runner = _runner(tmp_path, [_step("design"), _step("build")], executor)
        task = asyncio.create_task(runner.run())

        for _ in range(100):
            if runner.checkpoint_gate.waiting:
                break
            await asyncio.sleep(0.01)
        assert runner.checkpoint_gate.waiting
        assert runner.checkpoint_gate.reason == "look"
        assert executor.calls == ["design"]

        runner.checkpoint_gate.resume()
        result = await asyncio.wait_for(task, timeout=5)
        assert not result.stopped
        assert executor.calls == ["design", "build"]


class TestCancellationAndTriggers:
    @pytest.mark.asyncio
    async def test_skip_current_step_continues_the_run(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(tmp_path, cancelling={"slow"})
        runner = _runner(tmp_path, [_step("slow"), _step("next")], executor)
        task = asyncio.create_task(runner.run())

        for _ in range(100):
            if runner.skip_current_step("user pressed skip"):
                break
            await asyncio.sleep(0.01)

        result = await asyncio.wait_for(task, timeout=5)
        assert executor.calls == ["slow", "next"]
        assert result.steps[0].status is StepStatus.SKIPPED
        assert result.steps[0].skip_reason == "SLOW skipped (cancelled)."
        assert result.steps[1].status is StepStatus.COMPLETED
        assert runner.skip_current_step() is False

    @pytest.mark.asyncio
    async def test_trigger_runs_catalog_agent(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(tmp_path, {"release": ["SHIP"]})
        steps = [_behavior_step("release", TriggerBehavior(trigger_agent_id="notify", marker="SHIP")), _step("end")]
        await _runner(tmp_path, steps, executor).run()
        assert executor.calls == ["release", "notify", "end"]

    @pytest.mark.asyncio
    async def test_trigger_failure_does_not_fail_the_step(self, tmp_path: Path) -> None:
        executor = ScriptedExecutor(tmp_path, {"release": ["SHIP"]}, failing={"notify"})
        steps = [_behavior_step("release", TriggerBehavior(trigger_agent_id="notify", marker="SHIP"))]
        result = await _runner(tmp_path, steps, executor).run()

        assert executor.calls == ["release", "notify"]
        assert result.steps[0].status is StepStatus.COMPLETED


class TestAgentStepExecutor:
    @pytest.mark.asyncio
    async def test_prompt_is_processed_and_streamed(self, tmp_path: Path, fake_runner_factory) -> None:
        (tmp_path / "prompts").mkdir()
        (tmp_path / "prompts" / "a.md").write_text("Follow {rules}", encoding="utf-8")
        (tmp_path / "rules.md").write_text("RULES", encoding="utf-8")
        config = ConductorConfig(placeholders=PlaceholderConfig(user_dir={"rules": "rules.md"}))
        runner = fake_runner_factory({"Writer": "written"})
        streamed: list[tuple[str, str]] = []

        executor = AgentStepExecutor(tmp_path, config, runner, on_output=lambda a, c: streamed.append((a, c)))
        step = WorkflowStep(type=StepType.MODULE, agent_id="writer", agent_name="Writer", prompt_path="prompts/a.md")
        outcome = await executor(step, CancellationToken())

        assert runner.calls == [("Writer", "Follow RULES")]
        assert outcome.output == "written"
        assert outcome.cancelled is False
        assert streamed == [("writer", "written")]
