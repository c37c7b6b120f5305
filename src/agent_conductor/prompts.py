"""Prompt template loading and placeholder substitution.

Placeholders take two forms inside prompt templates:
    - {name}  - required; a load failure raises PlaceholderError
    - {!name} - optional; a load failure substitutes an empty string

Names are looked up in the project's placeholder configuration (userDir
first, then packageDir). Names that are not configured are left untouched.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from agent_conductor.config import ConductorConfig, PlaceholderConfig
from agent_conductor.errors import PlaceholderError

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{(!)?([a-zA-Z_][a-zA-Z0-9_]*)\}")


def resolve_placeholder_path(
    name: str,
    cwd: Path,
    config: PlaceholderConfig,
) -> Path | None:
    """Resolve a placeholder name to an absolute path (possibly a glob)."""
    if name in config.user_dir:
        return cwd / config.user_dir[name]
    if name in config.package_dir:
        base = Path(config.package_root) if config.package_root else cwd
        if not base.is_absolute():
            base = cwd / base
        return base / config.package_dir[name]
    return None


def load_placeholder_content(path: Path) -> str:
    """Read a placeholder target; glob patterns concatenate every match.

    Raises:
        FileNotFoundError: If the path (or glob) matches nothing.
    """
    if any(ch in path.name for ch in "*?["):
        matches = sorted(p for p in path.parent.glob(path.name) if p.is_file())
        if not matches:
            raise FileNotFoundError(f"No files match {path}")
        return "\n\n".join(p.read_text(encoding="utf-8") for p in matches)
    return path.read_text(encoding="utf-8")


def process_prompt(prompt: str, cwd: Path, config: PlaceholderConfig) -> str:
    """Replace every configured placeholder in ``prompt`` with file content.

    Args:
        prompt: Template text containing placeholders
        cwd: Project directory for userDir placeholders
        config: Placeholder mappings

    Returns:
        The prompt with placeholders substituted.

    Raises:
        PlaceholderError: If a required placeholder cannot be loaded.
    """
    optional: dict[str, bool] = {}
    for match in PLACEHOLDER_PATTERN.finditer(prompt):
        optional.setdefault(match.group(2), match.group(1) == "!")

    replacements: dict[str, str] = {}
    for name, is_optional in optional.items():
        path = resolve_placeholder_path(name, cwd, config)
        if path is None:
            logger.warning(f"Placeholder {{{name}}} found in prompt but not defined in placeholder config")
            continue
        try:
            replacements[name] = load_placeholder_content(path)
        except OSError as e:
            if is_optional:
                logger.debug(f"Optional placeholder {{!{name}}} not loaded: {e}")
                replacements[name] = ""
            else:
                raise PlaceholderError(name, str(path), str(e)) from e

    def _substitute(match: re.Match[str]) -> str:
        return replacements.get(match.group(2), match.group(0))

    return PLACEHOLDER_PATTERN.sub(_substitute, prompt)


def resolve_input_path(raw: str, cwd: Path, config: PlaceholderConfig) -> Path:
    """Resolve an input-file reference, substituting ``{name}`` with its path.

    Unresolvable placeholders fall back to the literal text with a warning;
    input resolution never raises.
    """

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(2)
        path = resolve_placeholder_path(name, cwd, config)
        if path is None:
            logger.warning(f"Unresolved placeholder {{{name}}} in input path {raw!r}; using it literally")
            return match.group(0)
        return str(path)

    resolved = Path(PLACEHOLDER_PATTERN.sub(_substitute, raw))
    if not resolved.is_absolute():
        resolved = cwd / resolved
    return resolved


def load_agent_template(agent_id: str, root: Path, config: ConductorConfig) -> str:
    """Load and process the prompt template of a catalog agent.

    Raises:
        ConductorConfigError: If the agent is unknown.
        PlaceholderError: If a required placeholder cannot be loaded.
        OSError: If the template file cannot be read.
    """
    agent = config.get_agent(agent_id)
    prompt_path = Path(agent.prompt_path)
    if not prompt_path.is_absolute():
        prompt_path = root / prompt_path
    raw = prompt_path.read_text(encoding="utf-8")
    return process_prompt(raw, root, config.placeholders)


__all__ = [
    "PLACEHOLDER_PATTERN",
    "load_agent_template",
    "load_placeholder_content",
    "process_prompt",
    "resolve_input_path",
    "resolve_placeholder_path",
]
