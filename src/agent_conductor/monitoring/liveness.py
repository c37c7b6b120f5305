"""Process liveness probes."""

from __future__ import annotations

import os
from typing import Protocol


class LivenessProbe(Protocol):
    def __call__(self, pid: int) -> bool: ...


def is_process_alive(pid: int) -> bool:
    """Return True if ``pid`` names a live process.

    Uses signal 0, which performs the permission and existence checks
    without delivering anything. A PermissionError means the process
    exists but belongs to another user.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True
