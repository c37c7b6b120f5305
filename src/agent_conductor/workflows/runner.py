"""Workflow runner: drives a template's steps with loop, checkpoint and trigger control.

The driver is a single forward index over the template's steps. Loop
behaviors rewind the index; every other rule only decides whether the step
at the current index runs. Per step:

    1. ui steps are informational and skipped
    2. executeOnce steps already completed in a previous run are skipped
    3. agents listed in the active loop's skip list are skipped
    4. the step is marked running and recorded as started
    5. a step left unfinished by a previous run runs its fallback agent first
    6. the step's agent runs
    7. a trigger behavior may launch another agent
    8. the step is marked completed
    9. a checkpoint may pause for a continue/quit decision
   10. a loop behavior may rewind the index

A cancelled step is skipped and the run continues. Any other failure leaves
the step running and ends the run with WorkflowStepError.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from agent_conductor.config import AgentDefinition, ConductorConfig
from agent_conductor.engines.base import CancellationToken
from agent_conductor.engines.runner import AgentRunner
from agent_conductor.errors import WorkflowStepError, WorkflowTemplateError
from agent_conductor.prompts import process_prompt
from agent_conductor.workflows.behaviors.behavior_file import BehaviorFile
from agent_conductor.workflows.behaviors.checkpoint import evaluate_checkpoint
from agent_conductor.workflows.behaviors.loop import evaluate_loop
from agent_conductor.workflows.behaviors.skip import should_skip_step
from agent_conductor.workflows.behaviors.trigger import evaluate_trigger
from agent_conductor.workflows.models import (
    ActiveLoop,
    CheckpointAction,
    LoopBehavior,
    StepOutcome,
    StepState,
    StepStatus,
    WorkflowRunResult,
    WorkflowRunStatus,
    WorkflowStep,
    WorkflowTemplate,
)
from agent_conductor.workflows.templates import resolve_step
from agent_conductor.workflows.tracking import TemplateTracker

logger = logging.getLogger(__name__)

StepExecutor = Callable[[WorkflowStep, CancellationToken], Awaitable[StepOutcome]]
CheckpointHandler = Callable[[WorkflowStep, str | None], Awaitable[CheckpointAction]]


class CheckpointGate:
    """Default checkpoint handler: waits, without a timeout, for resume() or quit()."""

    def __init__(self) -> None:
        self._future: asyncio.Future[CheckpointAction] | None = None
        self.step: WorkflowStep | None = None
        self.reason: str | None = None

    @property
    def waiting(self) -> bool:
        return self._future is not None and not self._future.done()

    async def __call__(self, step: WorkflowStep, reason: str | None) -> CheckpointAction:
        self._future = asyncio.get_running_loop().create_future()
        self.step = step
        self.reason = reason
        logger.info(f"Checkpoint reached at {step.agent_name}: {reason or 'awaiting decision'}")
        try:
            return await self._future
        finally:
            self._future = None
            self.step = None
            self.reason = None

    def _resolve(self, action: CheckpointAction) -> None:
        if self._future is None or self._future.done():
            logger.warning(f"No checkpoint is waiting; ignoring {action}")
            return
        self._future.set_result(action)

    def resume(self) -> None:
        self._resolve(CheckpointAction.CONTINUE)

    def quit(self) -> None:
        self._resolve(CheckpointAction.QUIT)


class AgentStepExecutor:
    """Runs a workflow step through an AgentRunner.

    The step's prompt file is read relative to ``root`` and its placeholders
    are substituted before the agent starts.
    """

    def __init__(
        self,
        root: Path,
        config: ConductorConfig,
        runner: AgentRunner,
        *,
        on_output: Callable[[str, str], None] | None = None,
    ) -> None:
        self.root = root
        self.config = config
        self.runner = runner
        self.on_output = on_output

    def build_prompt(self, step: WorkflowStep) -> str:
        if not step.prompt_path:
            raise WorkflowTemplateError(f"Step {step.agent_id} has no promptPath")
        prompt_path = Path(step.prompt_path)
        if not prompt_path.is_absolute():
            prompt_path = self.root / prompt_path
        return process_prompt(prompt_path.read_text(encoding="utf-8"), self.root, self.config.placeholders)

    def _stream_for(self, agent_id: str) -> Callable[[str], None]:
        on_output = self.on_output
        assert on_output is not None

        def _emit(chunk: str) -> None:
            on_output(agent_id, chunk)

        return _emit

    async def __call__(self, step: WorkflowStep, cancel: CancellationToken) -> StepOutcome:
        prompt = self.build_prompt(step)
        stream = self._stream_for(step.agent_id) if self.on_output is not None else None
        run = await self.runner.run(
            step.agent_name,
            prompt,
            engine=step.engine,
            model=step.model,
            cancel=cancel,
            on_output=stream,
        )
        return StepOutcome(
            output=run.output,
            cancelled=run.cancelled,
            agent_id=run.agent_id,
            telemetry=run.telemetry,
        )


class WorkflowRunner:
    """Executes a WorkflowTemplate step by step."""

    def __init__(
        self,
        template: WorkflowTemplate,
        *,
        cwd: Path,
        step_executor: StepExecutor,
        tracker: TemplateTracker | None = None,
        agents: list[AgentDefinition] | None = None,
        checkpoint_handler: CheckpointHandler | None = None,
        behavior_file: BehaviorFile | None = None,
    ) -> None:
        self.template = template
        self.cwd = cwd
        self.step_executor = step_executor
        self.tracker = tracker or TemplateTracker.for_project(cwd)
        self.agents = agents or []
        self.checkpoint_gate = CheckpointGate()
        self.checkpoint_handler: CheckpointHandler = checkpoint_handler or self.checkpoint_gate
        self.behavior_file = behavior_file or BehaviorFile.for_project(cwd)

        self.states: list[StepState] = [StepState() for _ in template.steps]
        self.loop_counters: dict[str, int] = {}
        self.active_loop: ActiveLoop | None = None
        self._current_cancel: CancellationToken | None = None

    # ------------------------------------------------------------------
    # External control
    # ------------------------------------------------------------------

    def skip_current_step(self, reason: str = "skipped by user") -> bool:
        """Cancel the step that is currently running.

        Returns:
            True if a step was running.
        """
        if self._current_cancel is None or self._current_cancel.cancelled:
            return False
        self._current_cancel.cancel(reason)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def loop_key(step: WorkflowStep, index: int) -> str:
        module_id = step.module.id if step.module else None
        return f"{module_id or step.agent_id}:{index}"

    def _agent_step(self, agent_id: str, base: WorkflowStep) -> WorkflowStep:
        return resolve_step(agent_id, self.agents, model=base.model, engine=base.engine)

    def _skip(self, index: int, reason: str | None) -> None:
        state = self.states[index]
        state.status = StepStatus.SKIPPED
        state.skip_reason = reason
        if reason:
            logger.info(reason)

    async def _run_fallback(self, step: WorkflowStep, cancel: CancellationToken) -> StepOutcome:
        fallback_id = step.not_completed_fallback or ""
        try:
            fallback = self._agent_step(fallback_id, step)
        except WorkflowTemplateError as e:
            raise WorkflowStepError(step.agent_name, f"Fallback agent not found: {fallback_id}") from e

        logger.info(f"Fallback agent {fallback.agent_name} for {step.agent_name} started to work.")
        try:
            outcome = await self.step_executor(fallback, cancel)
        except Exception as e:
            logger.error(f"Fallback agent {fallback.agent_name} failed: {e}")
            raise WorkflowStepError(fallback.agent_name, e) from e
        logger.info(f"Fallback agent {fallback.agent_name} completed.")
        return outcome

    async def _run_trigger(self, step: WorkflowStep, target: str, cancel: CancellationToken) -> None:
        try:
            triggered = self._agent_step(target, step)
            logger.info(f"{step.agent_name} triggered {triggered.agent_name}")
            outcome = await self.step_executor(triggered, cancel)
        except Exception as e:
            logger.error(f"Triggered agent '{target}' failed: {e}")
            return
        if outcome.cancelled:
            logger.info(f"Triggered agent '{target}' was cancelled")

    def _rewind(self, index: int, steps_back: int) -> int:
        for i in range(max(0, index - steps_back), index + 1):
            self.states[i].reset()
        return max(-1, index - steps_back - 1)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    async def run(self) -> WorkflowRunResult:
        """Run the template to completion or until a checkpoint quits.

        Raises:
            WorkflowStepError: If a step (or its fallback) fails.
        """
        steps = self.template.steps
        self.tracker.set_active_template(self.template.name)
        completed = set(self.tracker.get_completed_steps())
        not_completed_at_start = set(self.tracker.get_not_completed_steps())

        index = self.tracker.get_resume_start_index()
        if index >= len(steps):
            index = 0
        if index:
            logger.info(f"Resuming {self.template.name} from step {index}")

        while index < len(steps):
            step = steps[index]
            state = self.states[index]

            if not step.is_module:
                self._skip(index, None)
                index += 1
                continue

            decision = should_skip_step(step, index, completed, self.active_loop)
            if decision.skip:
                self._skip(index, decision.reason)
                index += 1
                continue

            state.reset()
            state.status = StepStatus.RUNNING
            self.behavior_file.reset()
            self.tracker.mark_step_started(index)
            logger.info(f"{step.agent_name} started to work.")

            cancel = CancellationToken()
            self._current_cancel = cancel
            try:
                if index in not_completed_at_start and step.not_completed_fallback:
                    fallback = await self._run_fallback(step, cancel)
                    if fallback.cancelled:
                        self._skip(index, f"{step.agent_name} skipped (cancelled).")
                        index += 1
                        continue

                try:
                    outcome = await self.step_executor(step, cancel)
                except WorkflowStepError:
                    raise
                except Exception as e:
                    logger.error(f"{step.agent_name} failed: {e}")
                    raise WorkflowStepError(step.agent_name, e) from e

                if outcome.cancelled or cancel.cancelled:
                    self._skip(index, f"{step.agent_name} skipped (cancelled).")
                    index += 1
                    continue

                state.output = outcome.output
                state.telemetry = outcome.telemetry
                state.agent_id = outcome.agent_id

                action = self.behavior_file.read()

                trigger = evaluate_trigger(step.behavior, outcome.output, action=action)
                if trigger is not None:
                    await self._run_trigger(step, trigger.trigger_agent_id, cancel)
            finally:
                self._current_cancel = None

            self.tracker.remove_from_not_completed(index)
            if step.execute_once:
                self.tracker.mark_step_completed(index)
                completed.add(index)
            state.status = StepStatus.COMPLETED
            logger.info(f"{step.agent_name} has completed their work.")

            checkpoint = evaluate_checkpoint(step.behavior, outcome.output, action=action)
            if checkpoint is not None:
                choice = await self.checkpoint_handler(step, checkpoint.reason)
                if choice is CheckpointAction.QUIT:
                    logger.info(f"Workflow stopped at checkpoint after {step.agent_name}")
                    return WorkflowRunResult(status=WorkflowRunStatus.STOPPED, steps=self.states)

            loop_decision = evaluate_loop(
                step.behavior,
                outcome.output,
                self.loop_counters.get(self.loop_key(step, index), 0),
                action=action,
            )
            if loop_decision is not None:
                key = self.loop_key(step, index)
                if loop_decision.should_repeat:
                    iteration = self.loop_counters.get(key, 0) + 1
                    self.loop_counters[key] = iteration
                    steps_back = max(1, loop_decision.steps_back)
                    behavior = step.behavior
                    skip = list(behavior.skip) if isinstance(behavior, LoopBehavior) else []
                    self.active_loop = ActiveLoop(skip=skip)
                    cap = behavior.max_iterations if isinstance(behavior, LoopBehavior) else None
                    logger.info(
                        f"{step.agent_name} triggered a loop ({loop_decision.reason}); "
                        f"iteration {iteration}{f'/{cap}' if cap else ''}"
                    )
                    index = self._rewind(index, steps_back) + 1
                    continue

                if loop_decision.reason:
                    logger.info(f"{step.agent_name} loop skipped: {loop_decision.reason}.")
                self.active_loop = None
                self.loop_counters[key] = 0

            index += 1

        return WorkflowRunResult(status=WorkflowRunStatus.COMPLETED, steps=self.states)


__all__ = [
    "AgentStepExecutor",
    "CheckpointGate",
    "CheckpointHandler",
    "StepExecutor",
    "WorkflowRunner",
]
