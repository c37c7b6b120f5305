"""Input-file loading and composite prompt assembly for coordinated agents."""

from __future__ import annotations

import logging
from pathlib import Path

from agent_conductor.config import PlaceholderConfig
from agent_conductor.prompts import load_placeholder_content, resolve_input_path

logger = logging.getLogger(__name__)

FILE_RULE = "=" * 60


def format_input_file(path: str, content: str) -> str:
    return f"\n=== File: {path} ===\n{content}\n{FILE_RULE}\n"


def format_failed_input(path: str, error: str) -> str:
    return f"\n=== File: {path} (FAILED TO LOAD) ===\nError: {error}\n{FILE_RULE}\n"


def load_input_files(paths: list[str], working_dir: Path, placeholders: PlaceholderConfig) -> str:
    """Concatenate input files, each under a ``=== File: <path> ===`` header.

    A file that cannot be read is replaced by a FAILED TO LOAD marker; the
    remaining files are still loaded.
    """
    blocks: list[str] = []
    for raw in paths:
        resolved = resolve_input_path(raw, working_dir, placeholders)
        try:
            blocks.append(format_input_file(raw, load_placeholder_content(resolved)))
        except OSError as e:
            logger.warning(f"Failed to load input file {raw}: {e}")
            blocks.append(format_failed_input(raw, str(e)))
    return "".join(blocks)


def build_composite_prompt(template: str, input_content: str, prompt: str | None) -> str:
    """Assemble template, input files and request, skipping blank sections."""
    sections: list[str] = []
    if template.strip():
        sections.append(template.strip())
    if input_content.strip():
        sections.append(f"[INPUT FILES]\n{input_content.strip()}")
    if prompt and prompt.strip():
        sections.append(f"[REQUEST]\n{prompt.strip()}")
    return "\n\n".join(sections)


__all__ = [
    "build_composite_prompt",
    "format_failed_input",
    "format_input_file",
    "load_input_files",
]
