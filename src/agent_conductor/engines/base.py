"""Engine adapter protocol and the types exchanged with adapters.

This module defines:
    - CancellationToken, threaded through a step, its fallback and triggers
    - EngineRunOptions / EngineRunResult for a single engine invocation
    - EngineAdapter Protocol that concrete engines implement
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from agent_conductor.monitoring.models import AgentTelemetry


class CancellationToken:
    """One-shot cancellation signal shared by cooperating coroutines."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class EngineRunOptions:
    """Everything an engine needs for one invocation.

    Attributes:
        prompt: Composite prompt text
        working_dir: Directory the agent runs in
        model: Optional model override
        env: Extra environment variables
        on_data: Called with each stdout chunk as it arrives
        on_error_data: Called with each stderr chunk as it arrives
        on_telemetry: Called when the engine reports usage
        on_pid: Called once the underlying process id is known
        cancel: Cancellation token; engines stop promptly when it fires
        timeout: Seconds before the invocation is abandoned
    """

    prompt: str
    working_dir: Path
    model: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    on_data: Callable[[str], None] | None = None
    on_error_data: Callable[[str], None] | None = None
    on_telemetry: Callable[[AgentTelemetry], None] | None = None
    on_pid: Callable[[int], None] | None = None
    cancel: CancellationToken | None = None
    timeout: float | None = None


@dataclass
class EngineRunResult:
    """Buffered outcome of an engine invocation."""

    stdout: str
    stderr: str = ""
    exit_code: int = 0
    telemetry: AgentTelemetry | None = None
    cancelled: bool = False


@runtime_checkable
class EngineAdapter(Protocol):
    """Contract every engine implements."""

    id: str
    name: str

    async def is_authenticated(self) -> bool: ...

    async def run(self, options: EngineRunOptions) -> EngineRunResult: ...


__all__ = [
    "CancellationToken",
    "EngineAdapter",
    "EngineRunOptions",
    "EngineRunResult",
]
