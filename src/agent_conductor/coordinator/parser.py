"""Parser for the coordination command DSL.

Syntax:
    - Single:     agent 'prompt'
    - Parallel:   agent1 'prompt1' & agent2 'prompt2'
    - Sequential: agent1 'prompt1' && agent2 'prompt2'
    - Mixed:      db 'schema' && frontend 'ui' & backend 'api' && test 'e2e'
    - Enhanced:   agent[input:spec.md;plan.md,tail:200,prompt:"text"] 'prompt'

Mode selection: when the script contains ``&&``, the top-level split is on
``&&``. If any of those segments also contains a bare ``&``, every segment
becomes its own group (``&`` segments parallel, the rest single-command
sequential groups). Otherwise ``&&`` yields one sequential group and ``&``
alone yields one parallel group.

Splitting never happens inside quotes. A quote character opens a quoted run
only at the start of the text or after whitespace, the delimiter, ``:`` or
``[``; it closes only before the end, whitespace, the delimiter, ``]`` or
``,``. This keeps apostrophes (``fix the user's bug``) from closing a prompt
early. Backslash-escaped quotes never toggle quoting.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from agent_conductor.coordinator.models import (
    AgentCommand,
    CommandGroup,
    CoordinationMode,
    CoordinationPlan,
)
from agent_conductor.errors import CoordinationParseError

logger = logging.getLogger(__name__)

QUOTE_CHARS = ("'", '"')
_OPEN_CONTEXT = (":", "[")
_CLOSE_CONTEXT = ("]", ",")
_NAME_PATTERN = re.compile(r"^[^\s'\"\[\]]+$")
_ESCAPED_QUOTE = re.compile(r"\\(['\"])")


# =============================================================================
# Quote-aware splitting
# =============================================================================


def _is_escaped(text: str, index: int) -> bool:
    return index > 0 and text[index - 1] == "\\"


def _can_open(text: str, index: int, delimiter: str) -> bool:
    if index == 0:
        return True
    prev = text[index - 1]
    return prev.isspace() or prev in _OPEN_CONTEXT or text[:index].endswith(delimiter)


def _can_close(text: str, index: int, delimiter: str) -> bool:
    nxt = index + 1
    if nxt >= len(text):
        return True
    following = text[nxt]
    return following.isspace() or following in _CLOSE_CONTEXT or text.startswith(delimiter, nxt)


def _is_delimiter_at(text: str, index: int, delimiter: str) -> bool:
    if not text.startswith(delimiter, index):
        return False
    if delimiter == "&":
        # A lone '&' must not be half of '&&'.
        if index + 1 < len(text) and text[index + 1] == "&":
            return False
        if index > 0 and text[index - 1] == "&":
            return False
    return True


def smart_split(text: str, delimiter: str) -> list[str]:
    """Split ``text`` on ``delimiter`` outside of quoted runs.

    Args:
        text: Text to split.
        delimiter: ``"&&"``, ``"&"`` or ``","``.

    Returns:
        The pieces between delimiters, untrimmed. A trailing empty piece
        is kept so a dangling delimiter surfaces as an empty command.
    """
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i = 0

    while i < len(text):
        char = text[i]

        if char in QUOTE_CHARS and not _is_escaped(text, i):
            if quote is None and _can_open(text, i, delimiter):
                quote = char
            elif quote == char and _can_close(text, i, delimiter):
                quote = None

        if quote is None and _is_delimiter_at(text, i, delimiter):
            parts.append("".join(current))
            current = []
            i += len(delimiter)
            continue

        current.append(char)
        i += 1

    parts.append("".join(current))
    return parts


def unquote(value: str) -> str:
    """Strip one pair of matching surrounding quotes and unescape inner quotes."""
    trimmed = value.strip()
    if len(trimmed) >= 2 and trimmed[0] in QUOTE_CHARS and trimmed[-1] == trimmed[0]:
        return _ESCAPED_QUOTE.sub(r"\1", trimmed[1:-1])
    return trimmed


def _is_quoted(value: str) -> bool:
    return len(value) >= 2 and value[0] in QUOTE_CHARS and value[-1] == value[0]


# =============================================================================
# Command parsing
# =============================================================================


def _parse_options(options_text: str) -> tuple[str | None, list[str] | None, int | None, dict[str, Any]]:
    prompt: str | None = None
    inputs: list[str] | None = None
    tail: int | None = None
    extra: dict[str, Any] = {}

    for part in smart_split(options_text, ","):
        part = part.strip()
        if not part or ":" not in part:
            continue
        key, value = part.split(":", 1)
        key = key.strip()
        value = value.strip()

        if key == "input":
            inputs = [p.strip() for p in unquote(value).split(";") if p.strip()]
        elif key == "tail":
            try:
                parsed = int(unquote(value))
            except ValueError:
                logger.debug(f"Ignoring invalid tail value: {value!r}")
                continue
            if parsed > 0:
                tail = parsed
        elif key == "prompt":
            prompt = unquote(value)
        else:
            extra[key] = unquote(value)

    return prompt, inputs, tail, extra


def _find_closing_bracket(text: str, start: int) -> int:
    quote: str | None = None
    for i in range(start, len(text)):
        char = text[i]
        if char in QUOTE_CHARS and not _is_escaped(text, i):
            if quote is None and _can_open(text, i, ","):
                quote = char
            elif quote == char and _can_close(text, i, ","):
                quote = None
        elif char == "]" and quote is None:
            return i
    return -1


def _syntax_error(fragment: str) -> CoordinationParseError:
    return CoordinationParseError(
        f"Invalid command syntax: {fragment}\n"
        f"Expected: agent-name 'prompt' or agent[options] 'prompt'"
    )


def _parse_enhanced(fragment: str, bracket: int) -> AgentCommand:
    name = fragment[:bracket]
    close = _find_closing_bracket(fragment, bracket + 1)
    if not name or close == -1 or not _NAME_PATTERN.match(name):
        raise _syntax_error(fragment)

    bracket_prompt, inputs, tail, extra = _parse_options(fragment[bracket + 1 : close])
    trailing = fragment[close + 1 :].strip()
    trailing_prompt = unquote(trailing) if trailing else None

    return AgentCommand(
        name=name,
        prompt=bracket_prompt or trailing_prompt or None,
        input=inputs,
        tail=tail,
        options=extra,
    )


def parse_command(fragment: str) -> AgentCommand:
    """Parse one command fragment.

    Raises:
        CoordinationParseError: If the fragment is not a valid command.
    """
    trimmed = fragment.strip()
    if not trimmed:
        raise _syntax_error(fragment)

    first_space = next((i for i, ch in enumerate(trimmed) if ch.isspace()), -1)
    head = trimmed if first_space == -1 else trimmed[:first_space]
    bracket = head.find("[")
    if bracket > 0:
        return _parse_enhanced(trimmed, bracket)

    if first_space == -1:
        if not _NAME_PATTERN.match(trimmed):
            raise _syntax_error(fragment)
        return AgentCommand(name=trimmed)

    name = trimmed[:first_space]
    if not _NAME_PATTERN.match(name):
        raise _syntax_error(fragment)
    rest = trimmed[first_space:].strip()
    prompt = unquote(rest) if _is_quoted(rest) else rest
    return AgentCommand(name=name, prompt=prompt or None)


# =============================================================================
# Script parsing
# =============================================================================


def _group(mode: CoordinationMode, fragments: list[str]) -> CommandGroup:
    return CommandGroup(mode=mode, commands=[parse_command(f) for f in fragments])


def parse_script(script: str) -> CoordinationPlan:
    """Parse a coordination script into a plan.

    Args:
        script: DSL text.

    Returns:
        CoordinationPlan whose groups run in order.

    Raises:
        CoordinationParseError: If the script is empty or a command is malformed.
    """
    trimmed = script.strip()
    if not trimmed:
        raise CoordinationParseError("Coordination script cannot be empty")

    sequential_parts = smart_split(trimmed, "&&")

    if len(sequential_parts) > 1:
        split_parts = [smart_split(part, "&") for part in sequential_parts]
        if any(len(parallel) > 1 for parallel in split_parts):
            groups = [
                _group(CoordinationMode.PARALLEL, parallel)
                if len(parallel) > 1
                else _group(CoordinationMode.SEQUENTIAL, parallel)
                for parallel in split_parts
            ]
            return CoordinationPlan(groups=groups)
        return CoordinationPlan(groups=[_group(CoordinationMode.SEQUENTIAL, sequential_parts)])

    parallel_parts = smart_split(trimmed, "&")
    if len(parallel_parts) > 1:
        return CoordinationPlan(groups=[_group(CoordinationMode.PARALLEL, parallel_parts)])

    return CoordinationPlan(groups=[_group(CoordinationMode.SEQUENTIAL, [trimmed])])


def format_plan(plan: CoordinationPlan) -> str:
    """Render a plan as a one-line summary, e.g. ``sequential[a] -> parallel[b, c]``."""
    return " -> ".join(
        f"{group.mode}[{', '.join(cmd.name for cmd in group.commands)}]" for group in plan.groups
    )


__all__ = [
    "format_plan",
    "parse_command",
    "parse_script",
    "smart_split",
    "unquote",
]
