"""Generic subprocess engine.

Runs a configured command line, pipes the composite prompt through stdin and
streams stdout/stderr back as it arrives. It knows nothing about any specific
tool's output format beyond a trailing ``tokens used: N`` summary line.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
import re
import shutil
from collections.abc import Callable

from agent_conductor.config import EngineDefinition
from agent_conductor.engines.base import EngineRunOptions, EngineRunResult
from agent_conductor.monitoring.models import AgentTelemetry

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536

TOKENS_USED_PATTERN = re.compile(r"tokens used:\s*([\d,]+)", re.IGNORECASE)


def parse_tokens_used(output: str) -> AgentTelemetry | None:
    """Extract the last ``tokens used: N`` summary, if any."""
    matches = TOKENS_USED_PATTERN.findall(output)
    if not matches:
        return None
    return AgentTelemetry(tokens_out=int(matches[-1].replace(",", "")))


class CommandEngine:
    """Engine backed by an external command-line agent."""

    def __init__(self, definition: EngineDefinition) -> None:
        self.id = definition.id
        self.name = definition.name
        self.command = list(definition.command)
        self.env = dict(definition.env)

    async def is_authenticated(self) -> bool:
        # The binary being on PATH is the only check a generic engine can make.
        return shutil.which(self.command[0]) is not None

    def build_command(self, options: EngineRunOptions) -> list[str]:
        cmd = list(self.command)
        if options.model:
            cmd.extend(["--model", options.model])
        return cmd

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        sink: list[str],
        callback: Callable[[str], None] | None,
    ) -> None:
        if stream is None:
            return
        # Fixed-size reads; readline() fails on lines longer than the stream limit.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            raw = await stream.read(READ_CHUNK_SIZE)
            chunk = decoder.decode(raw, final=not raw)
            if chunk:
                sink.append(chunk)
                if callback is not None:
                    callback(chunk)
            if not raw:
                break

    async def _feed(self, process: asyncio.subprocess.Process, prompt: str) -> None:
        if process.stdin is None:
            return
        try:
            process.stdin.write(prompt.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug(f"{self.id} closed stdin before the prompt was fully written")
        finally:
            process.stdin.close()

    async def _communicate(
        self,
        process: asyncio.subprocess.Process,
        options: EngineRunOptions,
        stdout: list[str],
        stderr: list[str],
    ) -> int:
        await asyncio.gather(
            self._feed(process, options.prompt),
            self._pump(process.stdout, stdout, options.on_data),
            self._pump(process.stderr, stderr, options.on_error_data),
        )
        return await process.wait()

    async def run(self, options: EngineRunOptions) -> EngineRunResult:
        cmd = self.build_command(options)
        logger.debug(f"Spawning {self.id}: {' '.join(cmd)}")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(options.working_dir),
            env={**os.environ, **self.env, **options.env},
        )
        if options.on_pid is not None:
            options.on_pid(process.pid)

        stdout: list[str] = []
        stderr: list[str] = []
        work = asyncio.ensure_future(self._communicate(process, options, stdout, stderr))
        cancel_wait = asyncio.ensure_future(options.cancel.wait()) if options.cancel else None

        try:
            if cancel_wait is not None:
                await asyncio.wait({work, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
                if not work.done():
                    logger.info(f"Cancelling {self.id} (pid {process.pid})")
                    process.kill()
                    await process.wait()
                    work.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await work
                    return EngineRunResult(
                        stdout="".join(stdout),
                        stderr="".join(stderr),
                        exit_code=process.returncode if process.returncode is not None else -1,
                        cancelled=True,
                    )
            exit_code = await work
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()
            if process.returncode is None:
                process.kill()
                await process.wait()

        output = "".join(stdout)
        telemetry = parse_tokens_used(output)
        if telemetry is not None and options.on_telemetry is not None:
            options.on_telemetry(telemetry)

        return EngineRunResult(
            stdout=output,
            stderr="".join(stderr),
            exit_code=exit_code,
            telemetry=telemetry,
        )


__all__ = ["CommandEngine", "parse_tokens_used"]
