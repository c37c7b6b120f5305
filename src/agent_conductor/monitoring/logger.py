"""Per-agent log files.

Each agent writes to its own append-only file. A lock file next to the log
is held while a chunk is written, and released before the file is closed.
Readers (``read_log``, tailing UIs) never take the lock.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

from filelock import FileLock, Timeout

logger = logging.getLogger(__name__)

HEADER_RULE = "=" * 60
STDERR_PREFIX = "[STDERR] "


def format_log_header(
    agent_id: int,
    name: str,
    prompt: str,
    started: datetime,
    *,
    verbose: bool = False,
) -> str:
    """Bordered header block; only the prompt's first line unless verbose."""
    shown = prompt if verbose else (prompt.splitlines()[0] if prompt else "")
    return (
        f"{HEADER_RULE}\n"
        f"=== Agent {agent_id} ({name}) Log ===\n"
        f"Started: {started.isoformat()}\n"
        f"Prompt: {shown}\n"
        f"{HEADER_RULE}\n\n"
    )


class AgentLogWriter:
    """Append-only writer for one agent's log file."""

    def __init__(
        self,
        log_path: Path,
        agent_id: int,
        name: str,
        prompt: str,
        *,
        verbose: bool = False,
        lock_timeout: float = 10,
    ) -> None:
        self.log_path = log_path
        self.agent_id = agent_id
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = FileLock(str(log_path) + ".lock", timeout=lock_timeout)
        self._handle: TextIO | None = open(self.log_path, "a", encoding="utf-8")
        self._stderr_line_open = False
        self.write(
            format_log_header(
                agent_id, name, prompt, datetime.now(timezone.utc), verbose=verbose
            )
        )

    def write(self, chunk: str) -> None:
        if self._handle is None or not chunk:
            return
        try:
            with self._lock:
                self._handle.write(chunk)
                self._handle.flush()
        except Timeout:
            # Advisory only: write without the lock rather than drop output.
            logger.warning(f"Log lock busy for agent {self.agent_id}; writing unlocked")
            self._handle.write(chunk)
            self._handle.flush()

    def write_stderr(self, chunk: str) -> None:
        # Chunks may end mid-line; only the start of a line gets the prefix.
        parts = []
        for line in chunk.splitlines(keepends=True):
            parts.append(line if self._stderr_line_open else f"{STDERR_PREFIX}{line}")
            self._stderr_line_open = not line.endswith(("\n", "\r"))
        self.write("".join(parts))

    def close(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        handle.close()

    def __enter__(self) -> AgentLogWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def read_log(log_path: Path, tail: int | None = None) -> str:
    """Read a log without locking; ``tail`` keeps only the last N lines."""
    content = log_path.read_text(encoding="utf-8", errors="replace")
    if tail is not None and tail > 0:
        lines = content.splitlines()
        if len(lines) > tail:
            return "\n".join(lines[-tail:])
    return content


__all__ = ["AgentLogWriter", "format_log_header", "read_log"]
