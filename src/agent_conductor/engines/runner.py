"""Agent execution: register with the monitor, run the engine, record the outcome.

Cancellation is reported as data: ``execute_agent`` returns an AgentRun whose
status is ``cancelled``. Every other failure (engine error, non-zero exit,
timeout) raises AgentExecutionError after the agent is marked failed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path

from agent_conductor.config import DEFAULT_TIMEOUT_SECONDS, ConductorConfig, resolve_agent_timeout
from agent_conductor.engines.base import CancellationToken, EngineAdapter, EngineRunOptions
from agent_conductor.engines.command import CommandEngine
from agent_conductor.engines.selection import AuthCache, EngineRegistry, select_engine
from agent_conductor.errors import AgentExecutionError
from agent_conductor.monitoring.logger import AgentLogWriter
from agent_conductor.monitoring.models import AgentTelemetry
from agent_conductor.monitoring.monitor import AgentMonitor

logger = logging.getLogger(__name__)


class AgentRunStatus(StrEnum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AgentRun:
    """Outcome of an agent run that did not fail."""

    agent_id: int
    status: AgentRunStatus
    output: str = ""
    telemetry: AgentTelemetry | None = None

    @property
    def cancelled(self) -> bool:
        return self.status is AgentRunStatus.CANCELLED


def _last_line(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return lines[-1].strip() if lines else ""


async def execute_agent(
    name: str,
    prompt: str,
    *,
    engine: EngineAdapter,
    monitor: AgentMonitor,
    working_dir: Path,
    parent_id: int | None = None,
    model: str | None = None,
    cancel: CancellationToken | None = None,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    on_output: Callable[[str], None] | None = None,
    on_error_output: Callable[[str], None] | None = None,
    verbose: bool = False,
) -> AgentRun:
    """Run one agent to completion.

    Args:
        name: Agent name recorded in the monitor.
        prompt: Composite prompt.
        engine: Engine to run on.
        monitor: Agent monitor that records the lifecycle.
        working_dir: Directory the agent runs in.
        parent_id: Spawning agent id, if any.
        model: Optional model override.
        cancel: Cancellation token.
        timeout: Seconds before the run is abandoned (None for no limit).
        on_output: Receives stdout chunks as they stream.
        on_error_output: Receives stderr chunks as they stream.
        verbose: Write the full prompt into the log header.

    Returns:
        AgentRun with status ``completed`` or ``cancelled``.

    Raises:
        AgentExecutionError: If the engine fails, exits non-zero or times out.
        MonitorError: If the agent cannot be registered.
    """
    agent_id = monitor.register(name, prompt, parent_id=parent_id, engine=engine.id, model_name=model)
    record = monitor.get_agent(agent_id)
    if record is not None:
        log_path = Path(record.log_path)
    else:
        log_path = Path(monitor.default_log_path(agent_id, name, datetime.now(timezone.utc)))
    writer = AgentLogWriter(log_path, agent_id, name, prompt, verbose=verbose)
    latest_telemetry: list[AgentTelemetry] = []

    def _on_data(chunk: str) -> None:
        writer.write(chunk)
        if on_output is not None:
            on_output(chunk)

    def _on_error_data(chunk: str) -> None:
        writer.write_stderr(chunk)
        if on_error_output is not None:
            on_error_output(chunk)

    def _on_telemetry(telemetry: AgentTelemetry) -> None:
        latest_telemetry[:] = [telemetry]
        monitor.update_telemetry(agent_id, telemetry)

    options = EngineRunOptions(
        prompt=prompt,
        working_dir=working_dir,
        model=model,
        on_data=_on_data,
        on_error_data=_on_error_data,
        on_telemetry=_on_telemetry,
        on_pid=lambda pid: monitor.update_pid(agent_id, pid),
        cancel=cancel,
        timeout=timeout,
    )

    try:
        try:
            if timeout:
                result = await asyncio.wait_for(engine.run(options), timeout=timeout)
            else:
                result = await engine.run(options)
        except asyncio.TimeoutError:
            message = f"Agent {name} timed out after {timeout:.0f}s"
            monitor.fail(agent_id, message)
            raise AgentExecutionError(message) from None
        except asyncio.CancelledError:
            monitor.fail(agent_id, "Cancelled")
            raise
        except AgentExecutionError as e:
            monitor.fail(agent_id, e)
            raise
        except Exception as e:
            monitor.fail(agent_id, e)
            raise AgentExecutionError(f"Agent {name} failed: {e}") from e

        telemetry = result.telemetry or (latest_telemetry[0] if latest_telemetry else None)

        if result.cancelled or (cancel is not None and cancel.cancelled):
            reason = cancel.reason if cancel is not None and cancel.reason else "cancelled"
            monitor.fail(agent_id, f"Cancelled: {reason}")
            logger.info(f"Agent {name} ({agent_id}) cancelled: {reason}")
            return AgentRun(agent_id, AgentRunStatus.CANCELLED, result.stdout, telemetry)

        if result.exit_code != 0:
            detail = _last_line(result.stderr)
            message = f"Agent {name} exited with code {result.exit_code}"
            if detail:
                message = f"{message}: {detail}"
            monitor.fail(agent_id, message)
            raise AgentExecutionError(message)

        monitor.complete(agent_id, telemetry)
        return AgentRun(agent_id, AgentRunStatus.COMPLETED, result.stdout, telemetry)
    finally:
        writer.close()


class AgentRunner:
    """Runs agents by name: picks an engine, then delegates to execute_agent."""

    def __init__(
        self,
        *,
        monitor: AgentMonitor,
        registry: EngineRegistry,
        working_dir: Path,
        auth_cache: AuthCache | None = None,
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
        verbose: bool = False,
    ) -> None:
        self.monitor = monitor
        self.registry = registry
        self.working_dir = working_dir
        self.auth_cache = auth_cache or AuthCache()
        self.timeout = timeout
        self.verbose = verbose

    @classmethod
    def from_config(
        cls,
        config: ConductorConfig,
        *,
        monitor: AgentMonitor,
        working_dir: Path,
        auth_cache: AuthCache | None = None,
    ) -> AgentRunner:
        registry = EngineRegistry(default_id=config.default_engine)
        for definition in config.engines:
            registry.register(CommandEngine(definition))
        return cls(
            monitor=monitor,
            registry=registry,
            working_dir=working_dir,
            auth_cache=auth_cache,
            timeout=resolve_agent_timeout(config),
            verbose=config.verbose,
        )

    async def run(
        self,
        name: str,
        prompt: str,
        *,
        parent_id: int | None = None,
        engine: str | None = None,
        model: str | None = None,
        cancel: CancellationToken | None = None,
        on_output: Callable[[str], None] | None = None,
        on_error_output: Callable[[str], None] | None = None,
    ) -> AgentRun:
        selected = await select_engine(self.registry, self.auth_cache, engine)
        logger.debug(f"Running {name} on {selected.id}")
        return await execute_agent(
            name,
            prompt,
            engine=selected,
            monitor=self.monitor,
            working_dir=self.working_dir,
            parent_id=parent_id,
            model=model,
            cancel=cancel,
            timeout=self.timeout,
            on_output=on_output,
            on_error_output=on_error_output,
            verbose=self.verbose,
        )


__all__ = ["AgentRun", "AgentRunStatus", "AgentRunner", "execute_agent"]
