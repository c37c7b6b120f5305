"""Executor for coordination plans.

Groups run strictly one after another. Inside a group:
    - parallel: every command is launched at once and all results are kept
    - sequential: commands run in order and stop at the first failure,
      which also halts the remaining groups

Command failures are returned as data (``AgentExecutionResult.success``),
never raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from agent_conductor.config import PlaceholderConfig
from agent_conductor.coordinator.inputs import build_composite_prompt, load_input_files
from agent_conductor.coordinator.models import (
    AgentCommand,
    AgentExecutionResult,
    CommandGroup,
    CoordinationMode,
    CoordinationPlan,
    CoordinationResult,
)
from agent_conductor.engines.base import CancellationToken
from agent_conductor.engines.runner import AgentRun
from agent_conductor.monitoring.monitor import AgentMonitor

logger = logging.getLogger(__name__)


class AgentRunnerLike(Protocol):
    async def run(
        self,
        name: str,
        prompt: str,
        *,
        parent_id: int | None = None,
        cancel: CancellationToken | None = None,
        on_output: Callable[[str], None] | None = None,
    ) -> AgentRun: ...


def apply_tail(output: str, tail: int | None) -> tuple[str, int | None]:
    """Keep the last ``tail`` lines when the output is longer."""
    if not tail or tail <= 0:
        return output, None
    lines = output.split("\n")
    if len(lines) <= tail:
        return output, None
    return "\n".join(lines[-tail:]), tail


class CoordinationExecutor:
    """Runs the groups of a CoordinationPlan."""

    def __init__(
        self,
        working_dir: Path,
        *,
        runner: AgentRunnerLike,
        monitor: AgentMonitor,
        parent_id: int | None = None,
        placeholders: PlaceholderConfig | None = None,
        template_loader: Callable[[str], str] | None = None,
        on_output: Callable[[str, str], None] | None = None,
        cancel: CancellationToken | None = None,
    ) -> None:
        self.working_dir = working_dir
        self.runner = runner
        self.monitor = monitor
        self.parent_id = parent_id
        self.placeholders = placeholders or PlaceholderConfig()
        self.template_loader = template_loader
        self.on_output = on_output
        self.cancel = cancel

    async def execute(self, plan: CoordinationPlan) -> CoordinationResult:
        """Execute every group in order.

        Returns:
            CoordinationResult; ``success`` is True only if every produced
            result succeeded.
        """
        results: list[AgentExecutionResult] = []

        for index, group in enumerate(plan.groups, start=1):
            group_results = await self.execute_group(group)
            results.extend(group_results)

            if group.mode is CoordinationMode.SEQUENTIAL and any(not r.success for r in group_results):
                remaining = len(plan.groups) - index
                if remaining:
                    logger.warning(f"Sequential group failed; skipping {remaining} remaining group(s)")
                break

        return CoordinationResult(
            parent_id=self.parent_id,
            results=results,
            success=all(r.success for r in results),
        )

    async def execute_group(self, group: CommandGroup) -> list[AgentExecutionResult]:
        if group.mode is CoordinationMode.PARALLEL:
            logger.info(f"Executing {len(group.commands)} agents in parallel")
            return list(await asyncio.gather(*(self.execute_command(c) for c in group.commands)))

        results: list[AgentExecutionResult] = []
        for position, command in enumerate(group.commands, start=1):
            logger.info(f"Executing agent {position}/{len(group.commands)}: {command.name}")
            result = await self.execute_command(command)
            results.append(result)
            if not result.success:
                logger.error(f"Agent {result.name} failed, stopping sequential execution")
                break
        return results

    def _stream_for(self, name: str) -> Callable[[str], None]:
        on_output = self.on_output
        assert on_output is not None

        def _emit(chunk: str) -> None:
            on_output(name, chunk)

        return _emit

    def _latest_agent_id(self, name: str) -> int:
        agents = self.monitor.query_agents(name=name, parent_id=self.parent_id)
        return max((a.id for a in agents), default=0)

    async def execute_command(self, command: AgentCommand) -> AgentExecutionResult:
        """Run one command and capture its outcome as a result object."""
        inputs = tuple(command.input) if command.input else None
        try:
            input_content = ""
            if command.input:
                input_content = load_input_files(command.input, self.working_dir, self.placeholders)

            template = self.template_loader(command.name) if self.template_loader else ""
            composite = build_composite_prompt(template, input_content, command.prompt)

            # With tail limiting the full stream is not echoed, only the tail.
            stream: Callable[[str], None] | None = None
            if self.on_output is not None and not command.tail:
                stream = self._stream_for(command.name)

            run = await self.runner.run(
                command.name,
                composite,
                parent_id=self.parent_id,
                cancel=self.cancel,
                on_output=stream,
            )
        except Exception as e:
            logger.error(f"Agent {command.name} failed: {e}")
            return AgentExecutionResult(
                name=command.name,
                agent_id=self._latest_agent_id(command.name),
                success=False,
                prompt=command.prompt,
                input=inputs,
                error=str(e),
            )

        if run.cancelled:
            return AgentExecutionResult(
                name=command.name,
                agent_id=run.agent_id,
                success=False,
                prompt=command.prompt,
                input=inputs,
                output=run.output,
                error="Cancelled",
            )

        output, tail_applied = apply_tail(run.output, command.tail)
        if tail_applied:
            logger.debug(f"Applied tail limiting to {command.name}: last {tail_applied} lines")

        return AgentExecutionResult(
            name=command.name,
            agent_id=run.agent_id,
            success=True,
            prompt=command.prompt,
            input=inputs,
            output=output,
            tail_applied=tail_applied,
        )


__all__ = ["AgentRunnerLike", "CoordinationExecutor", "apply_tail"]
