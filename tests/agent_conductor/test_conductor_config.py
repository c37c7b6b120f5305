"""Tests for .codemachine/config.yaml loading and saving."""

from __future__ import annotations

from pathlib import Path

import pytest

from agent_conductor.config import (
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_PLACEHOLDERS,
    AgentDefinition,
    ConductorConfig,
    EngineDefinition,
    find_project_root,
    load_conductor_config,
    resolve_agent_timeout,
    save_conductor_config,
)
from agent_conductor.errors import ConductorConfigError


def _write_config(root: Path, text: str) -> None:
    config_dir = root / ".codemachine"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "config.yaml").write_text(text, encoding="utf-8")


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    config = load_conductor_config(tmp_path)
    assert config.timeout_seconds == DEFAULT_TIMEOUT_SECONDS
    assert config.agents == []
    assert config.placeholders.user_dir == DEFAULT_USER_PLACEHOLDERS


def test_full_config(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        """
agents:
  timeout_seconds: 120
  catalog:
    - id: planner
      promptPath: prompts/planner.md
      model: big
    - id: coder
      name: Coder
      promptPath: prompts/coder.md
      engine: codex
engines:
  default: codex
  registered:
    - id: claude
      command: claude --print
    - id: codex
      name: Codex
      command: [codex, exec]
      env: {CODEX_QUIET: 1}
placeholders:
  userDir:
    plan: docs/plan.md
  packageDir:
    guidelines: prompts/guidelines.md
  packageRoot: /opt/prompts
logging:
  verbose: true
""",
    )
    config = load_conductor_config(tmp_path)

    assert config.timeout_seconds == 120.0
    assert config.get_agent("planner").name == "planner"
    assert config.get_agent("coder").engine == "codex"
    assert [e.command for e in config.engines] == [["claude", "--print"], ["codex", "exec"]]
    assert config.engines[1].env == {"CODEX_QUIET": "1"}
    assert config.default_engine == "codex"
    assert config.placeholders.user_dir["plan"] == "docs/plan.md"
    assert config.placeholders.user_dir["tasks"] == DEFAULT_USER_PLACEHOLDERS["tasks"]
    assert config.placeholders.package_dir == {"guidelines": "prompts/guidelines.md"}
    assert config.placeholders.package_root == "/opt/prompts"
    assert config.verbose is True


def test_unknown_agent_lists_available(tmp_path: Path) -> None:
    config = ConductorConfig(agents=[AgentDefinition(id="a", name="A", prompt_path="a.md")])
    with pytest.raises(ConductorConfigError, match="Available agents: a"):
        config.get_agent("b")


@pytest.mark.parametrize(
    "text",
    [
        "agents: [1, 2]\n",
        "agents:\n  catalog:\n    - id: x\n",
        "agents:\n  timeout_seconds: soon\n",
        "engines:\n  registered:\n    - name: nameless\n",
        "agents: {catalog: [\n",
    ],
)
def test_invalid_config(tmp_path: Path, text: str) -> None:
    _write_config(tmp_path, text)
    with pytest.raises(ConductorConfigError):
        load_conductor_config(tmp_path)


def test_save_round_trip_keeps_unrelated_sections(tmp_path: Path) -> None:
    _write_config(tmp_path, "custom:\n  keep: me\n")
    config = ConductorConfig(
        timeout_seconds=30,
        agents=[AgentDefinition(id="planner", name="Planner", prompt_path="p.md")],
        engines=[EngineDefinition(id="claude", name="Claude", command=["claude"])],
        default_engine="claude",
    )
    save_conductor_config(tmp_path, config)

    reloaded = load_conductor_config(tmp_path)
    assert reloaded.agents == config.agents
    assert reloaded.engines == config.engines
    assert reloaded.default_engine == "claude"
    assert "keep: me" in (tmp_path / ".codemachine" / "config.yaml").read_text()


def test_timeout_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    config = ConductorConfig(timeout_seconds=42)
    assert resolve_agent_timeout(config) == 42
    monkeypatch.setenv("CONDUCTOR_AGENT_TIMEOUT", "250")
    assert resolve_agent_timeout(config) == 0.25
    monkeypatch.setenv("CONDUCTOR_AGENT_TIMEOUT", "later")
    assert resolve_agent_timeout(config) == 42


def test_project_root_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CONDUCTOR_CWD", raising=False)
    assert find_project_root(tmp_path) == tmp_path.resolve()
    monkeypatch.setenv("CONDUCTOR_CWD", str(tmp_path / "elsewhere"))
    assert find_project_root(tmp_path) == (tmp_path / "elsewhere").resolve()
