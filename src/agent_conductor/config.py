"""Project configuration for the conductor.

The configuration is stored in .codemachine/config.yaml and holds the agent
catalog, the registered engines, prompt placeholder mappings and logging
preferences. Missing files and missing sections fall back to defaults.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

from agent_conductor.errors import ConductorConfigError

logger = logging.getLogger(__name__)

STATE_DIR_NAME = ".codemachine"
CONFIG_FILE_NAME = "config.yaml"

DEFAULT_TIMEOUT_SECONDS = 600.0
TIMEOUT_ENV_VAR = "CONDUCTOR_AGENT_TIMEOUT"
CWD_ENV_VAR = "CONDUCTOR_CWD"

# Paths relative to the user's project directory
DEFAULT_USER_PLACEHOLDERS: dict[str, str] = {
    "specifications": ".codemachine/inputs/specifications.md",
    "architecture": ".codemachine/artifacts/architecture/*.md",
    "architecture_manifest_json": ".codemachine/artifacts/architecture/architecture_manifest.json",
    "plan": ".codemachine/artifacts/plan/*.md",
    "plan_manifest_json": ".codemachine/artifacts/plan/plan_manifest.json",
    "plan_fallback": ".codemachine/prompts/plan_fallback.md",
    "tasks": ".codemachine/artifacts/tasks.json",
    "all_tasks_json": ".codemachine/artifacts/tasks/*.json",
    "task_fallback": ".codemachine/prompts/task_fallback.md",
}


@dataclass
class AgentDefinition:
    """Catalog entry for an agent that steps and commands can reference."""

    id: str
    name: str
    prompt_path: str
    model: str | None = None
    engine: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "name": self.name, "promptPath": self.prompt_path}
        if self.model:
            d["model"] = self.model
        if self.engine:
            d["engine"] = self.engine
        if self.description:
            d["description"] = self.description
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentDefinition:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            prompt_path=str(data["promptPath"]),
            model=data.get("model"),
            engine=data.get("engine"),
            description=data.get("description"),
        )


@dataclass
class EngineDefinition:
    """A command-line engine the conductor may shell out to."""

    id: str
    name: str
    command: list[str]
    env: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "name": self.name, "command": list(self.command)}
        if self.env:
            d["env"] = dict(self.env)
        return d


@dataclass
class PlaceholderConfig:
    """Placeholder name to path mappings.

    Attributes:
        user_dir: Paths relative to the project directory
        package_dir: Paths relative to the prompts package root
        package_root: Base directory for package_dir entries (project root if unset)
    """

    user_dir: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_USER_PLACEHOLDERS))
    package_dir: dict[str, str] = field(default_factory=dict)
    package_root: str | None = None


@dataclass
class ConductorConfig:
    """Full conductor configuration."""

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    agents: list[AgentDefinition] = field(default_factory=list)
    engines: list[EngineDefinition] = field(default_factory=list)
    default_engine: str | None = None
    placeholders: PlaceholderConfig = field(default_factory=PlaceholderConfig)
    verbose: bool = False

    def get_agent(self, agent_id: str) -> AgentDefinition:
        """Look up an agent by id.

        Raises:
            ConductorConfigError: If the agent is not in the catalog.
        """
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        available = ", ".join(a.id for a in self.agents) or "none"
        raise ConductorConfigError(f"Unknown agent id: {agent_id}. Available agents: {available}")


def find_project_root(start: Path | None = None) -> Path:
    """Resolve the project root, honouring the CONDUCTOR_CWD override."""
    override = os.environ.get(CWD_ENV_VAR)
    if override:
        return Path(override).resolve()
    return (start or Path.cwd()).resolve()


def state_dir(root: Path) -> Path:
    return root / STATE_DIR_NAME


def _as_mapping(value: Any, *, section: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConductorConfigError(f"Invalid {section} in config.yaml: expected a mapping")
    return value


def _as_list(value: Any, *, section: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConductorConfigError(f"Invalid {section} in config.yaml: expected a list")
    return value


def _parse_engines(data: dict[str, Any]) -> list[EngineDefinition]:
    engines: list[EngineDefinition] = []
    for entry in _as_list(data.get("registered"), section="engines.registered"):
        if not isinstance(entry, dict) or "id" not in entry:
            raise ConductorConfigError("Invalid engines.registered entry: each engine needs an id")
        command = entry.get("command") or [entry["id"]]
        if isinstance(command, str):
            command = command.split()
        engines.append(
            EngineDefinition(
                id=str(entry["id"]),
                name=str(entry.get("name") or entry["id"]),
                command=[str(part) for part in command],
                env={str(k): str(v) for k, v in (entry.get("env") or {}).items()},
            )
        )
    return engines


def load_conductor_config(root: Path) -> ConductorConfig:
    """Load configuration from .codemachine/config.yaml.

    Args:
        root: Project root directory

    Returns:
        ConductorConfig instance (defaults if not configured)

    Raises:
        ConductorConfigError: If the file is not valid YAML or has invalid sections.
    """
    config_file = state_dir(root) / CONFIG_FILE_NAME

    if not config_file.exists():
        logger.debug(f"Config file not found: {config_file}")
        return ConductorConfig()

    yaml = YAML()
    yaml.preserve_quotes = True

    try:
        with open(config_file, "r") as f:
            data = yaml.load(f) or {}
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        raise ConductorConfigError(f"Invalid YAML in {config_file}: {e}") from e

    data = _as_mapping(data, section="root")
    agents_data = _as_mapping(data.get("agents"), section="agents")
    engines_data = _as_mapping(data.get("engines"), section="engines")
    placeholder_data = _as_mapping(data.get("placeholders"), section="placeholders")
    logging_data = _as_mapping(data.get("logging"), section="logging")

    try:
        agents = [
            AgentDefinition.from_dict(dict(entry))
            for entry in _as_list(agents_data.get("catalog"), section="agents.catalog")
        ]
    except KeyError as e:
        raise ConductorConfigError(f"Invalid agents.catalog entry: missing {e}") from e

    try:
        timeout = float(agents_data.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
    except (TypeError, ValueError) as e:
        raise ConductorConfigError("Invalid agents.timeout_seconds: expected a number") from e

    user_dir = dict(DEFAULT_USER_PLACEHOLDERS)
    user_dir.update(_as_mapping(placeholder_data.get("userDir"), section="placeholders.userDir"))

    return ConductorConfig(
        timeout_seconds=timeout,
        agents=agents,
        engines=_parse_engines(engines_data),
        default_engine=engines_data.get("default"),
        placeholders=PlaceholderConfig(
            user_dir={str(k): str(v) for k, v in user_dir.items()},
            package_dir={
                str(k): str(v)
                for k, v in _as_mapping(
                    placeholder_data.get("packageDir"), section="placeholders.packageDir"
                ).items()
            },
            package_root=placeholder_data.get("packageRoot"),
        ),
        verbose=bool(logging_data.get("verbose", False)),
    )


def save_conductor_config(root: Path, config: ConductorConfig) -> None:
    """Save configuration to .codemachine/config.yaml.

    Merges with the existing file so unrelated sections are preserved.
    """
    config_dir = state_dir(root)
    config_file = config_dir / CONFIG_FILE_NAME

    yaml = YAML()
    yaml.preserve_quotes = True

    if config_file.exists():
        with open(config_file, "r") as f:
            data = yaml.load(f) or {}
    else:
        data = {}
        config_dir.mkdir(parents=True, exist_ok=True)

    data["agents"] = {
        "timeout_seconds": config.timeout_seconds,
        "catalog": [a.to_dict() for a in config.agents],
    }
    engines: dict[str, Any] = {"registered": [e.to_dict() for e in config.engines]}
    if config.default_engine:
        engines["default"] = config.default_engine
    data["engines"] = engines
    placeholders: dict[str, Any] = {
        "userDir": dict(config.placeholders.user_dir),
        "packageDir": dict(config.placeholders.package_dir),
    }
    if config.placeholders.package_root:
        placeholders["packageRoot"] = config.placeholders.package_root
    data["placeholders"] = placeholders
    data["logging"] = {"verbose": config.verbose}

    with open(config_file, "w") as f:
        yaml.dump(data, f)

    logger.info(f"Saved conductor config to {config_file}")


def resolve_agent_timeout(config: ConductorConfig) -> float:
    """Agent timeout in seconds; CONDUCTOR_AGENT_TIMEOUT (milliseconds) wins."""
    raw = os.environ.get(TIMEOUT_ENV_VAR)
    if raw:
        try:
            return int(raw) / 1000.0
        except ValueError:
            logger.warning(f"Ignoring invalid {TIMEOUT_ENV_VAR}={raw!r}")
    return config.timeout_seconds


__all__ = [
    "AgentDefinition",
    "ConductorConfig",
    "EngineDefinition",
    "PlaceholderConfig",
    "find_project_root",
    "load_conductor_config",
    "resolve_agent_timeout",
    "save_conductor_config",
    "state_dir",
]
