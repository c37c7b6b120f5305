"""Trigger evaluation: decide whether a step should launch another agent."""

from __future__ import annotations

import logging

from agent_conductor.workflows.behaviors.behavior_file import BehaviorAction, BehaviorActionType
from agent_conductor.workflows.behaviors.loop import output_ends_with
from agent_conductor.workflows.models import ModuleBehavior, TriggerBehavior, TriggerDecision

logger = logging.getLogger(__name__)


def evaluate_trigger(
    behavior: ModuleBehavior | None,
    output: str,
    *,
    action: BehaviorAction | None = None,
) -> TriggerDecision | None:
    """Return the agent to trigger, if any.

    Only steps with a TriggerBehavior can trigger. The target agent comes from
    the side channel's ``triggerAgentId`` first, then from the behavior.
    """
    if not isinstance(behavior, TriggerBehavior):
        return None

    requested = action is not None and action.action is BehaviorActionType.TRIGGER
    marked = bool(behavior.marker) and output_ends_with(output, behavior.marker or "")
    if not (requested or marked):
        return None

    target = (action.trigger_agent_id if requested and action else None) or behavior.trigger_agent_id
    if not target:
        logger.error("Trigger requested but no triggerAgentId in behavior.json or module configuration")
        return None

    reason = action.reason if requested and action else f"output ended with {behavior.marker}"
    return TriggerDecision(trigger_agent_id=target, reason=reason)


__all__ = ["evaluate_trigger"]
