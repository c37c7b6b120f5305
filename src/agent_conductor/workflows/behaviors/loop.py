"""Loop behavior evaluation.

A loop step repeats the preceding ``steps_back`` steps when the last real
line of its output equals the loop trigger. Engines often append telemetry
after the agent's final line, e.g.

    LOOP
    [2025-01-01T10:00:00] tokens used: 1234

so trailing blank lines and timestamped ``[<ts>] <label>: <number>`` lines
are skipped before comparing.
"""

from __future__ import annotations

import logging
import re

from agent_conductor.workflows.behaviors.behavior_file import BehaviorAction, BehaviorActionType
from agent_conductor.workflows.models import LoopBehavior, LoopDecision, ModuleBehavior

logger = logging.getLogger(__name__)

ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]")
CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
TELEMETRY_LINE_PATTERN = re.compile(r"^\[[^\]]+\]\s+[A-Za-z][\w .-]*:\s*[\d.,]+\s*$")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences and stray control characters."""
    text = text.replace("\r\n", "\n")
    return CONTROL_PATTERN.sub("", ANSI_PATTERN.sub("", text))


def last_meaningful_line(output: str) -> str | None:
    """The last line that is neither blank nor timestamped telemetry."""
    for line in reversed(strip_ansi(output).split("\n")):
        candidate = line.strip()
        if not candidate or TELEMETRY_LINE_PATTERN.match(candidate):
            continue
        return candidate
    return None


def output_ends_with(output: str, token: str) -> bool:
    return bool(token) and last_meaningful_line(output) == token.strip()


def evaluate_loop(
    behavior: ModuleBehavior | None,
    output: str,
    iteration_count: int,
    *,
    action: BehaviorAction | None = None,
) -> LoopDecision | None:
    """Decide whether a loop step should repeat.

    Args:
        behavior: The step's module behavior.
        output: Raw step output.
        iteration_count: Repeats already performed for this step.
        action: Current side-channel action; ``loop`` forces a match and
            ``stop`` ends the loop.

    Returns:
        None when the step has no loop behavior, otherwise a LoopDecision.
    """
    if not isinstance(behavior, LoopBehavior):
        return None

    steps_back = behavior.steps_back
    action_type = action.action if action is not None else None

    if action_type is BehaviorActionType.STOP:
        return LoopDecision(should_repeat=False, steps_back=steps_back, reason=action.reason if action else None)

    matched = action_type is BehaviorActionType.LOOP or output_ends_with(output, behavior.trigger)
    if not matched:
        return LoopDecision(should_repeat=False, steps_back=steps_back)

    max_iterations = behavior.max_iterations if behavior.max_iterations and behavior.max_iterations > 0 else None
    if max_iterations is not None and iteration_count >= max_iterations:
        logger.debug(f"Loop cap reached after {iteration_count} iterations")
        return LoopDecision(
            should_repeat=False,
            steps_back=steps_back,
            reason=f"loop limit reached ({max_iterations})",
        )

    reason = (action.reason if action is not None else None) or f"output ended with {behavior.trigger}"
    return LoopDecision(should_repeat=True, steps_back=steps_back, reason=reason)


__all__ = [
    "evaluate_loop",
    "last_meaningful_line",
    "output_ends_with",
    "strip_ansi",
]
