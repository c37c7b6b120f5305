"""Tests for prompt placeholder substitution."""

from __future__ import annotations

from pathlib import Path

import pytest

from agent_conductor.config import AgentDefinition, ConductorConfig, PlaceholderConfig
from agent_conductor.errors import ConductorConfigError, PlaceholderError
from agent_conductor.prompts import load_agent_template, process_prompt, resolve_input_path


@pytest.fixture()
def placeholders(tmp_path: Path) -> PlaceholderConfig:
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "spec.md").write_text("SPEC", encoding="utf-8")
    (tmp_path / "arch").mkdir()
    (tmp_path / "arch" / "01.md").write_text("ONE", encoding="utf-8")
    (tmp_path / "arch" / "02.md").write_text("TWO", encoding="utf-8")
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "rules.md").write_text("RULES", encoding="utf-8")
    return PlaceholderConfig(
        user_dir={
            "spec": "docs/spec.md",
            "architecture": "arch/*.md",
            "missing": "docs/missing.md",
            "shared": "docs/spec.md",
        },
        package_dir={"rules": "rules.md", "shared": "rules.md"},
        package_root="pkg",
    )


def test_required_and_glob_placeholders(tmp_path: Path, placeholders: PlaceholderConfig) -> None:
    result = process_prompt("S={spec} A={architecture} R={rules}", tmp_path, placeholders)
    assert result == "S=SPEC A=ONE\n\nTWO R=RULES"


def test_user_dir_wins_over_package_dir(tmp_path: Path, placeholders: PlaceholderConfig) -> None:
    assert process_prompt("{shared}", tmp_path, placeholders) == "SPEC"


def test_optional_placeholder_becomes_empty(tmp_path: Path, placeholders: PlaceholderConfig) -> None:
    assert process_prompt("before[{!missing}]after", tmp_path, placeholders) == "before[]after"


def test_required_placeholder_failure_raises(tmp_path: Path, placeholders: PlaceholderConfig) -> None:
    with pytest.raises(PlaceholderError) as exc_info:
        process_prompt("{missing}", tmp_path, placeholders)
    assert exc_info.value.name == "missing"


def test_unconfigured_names_are_left_alone(tmp_path: Path, placeholders: PlaceholderConfig) -> None:
    assert process_prompt("keep {unknown} and {!other}", tmp_path, placeholders) == "keep {unknown} and {!other}"


def test_input_path_substitution(tmp_path: Path, placeholders: PlaceholderConfig) -> None:
    assert resolve_input_path("{spec}", tmp_path, placeholders) == tmp_path / "docs" / "spec.md"
    assert resolve_input_path("notes/{nope}.md", tmp_path, placeholders) == tmp_path / "notes" / "{nope}.md"


def test_load_agent_template(tmp_path: Path, placeholders: PlaceholderConfig) -> None:
    (tmp_path / "prompts").mkdir()
    (tmp_path / "prompts" / "planner.md").write_text("Plan from {spec}", encoding="utf-8")
    config = ConductorConfig(
        agents=[AgentDefinition(id="planner", name="Planner", prompt_path="prompts/planner.md")],
        placeholders=placeholders,
    )
    assert load_agent_template("planner", tmp_path, config) == "Plan from SPEC"
    with pytest.raises(ConductorConfigError):
        load_agent_template("ghost", tmp_path, config)
