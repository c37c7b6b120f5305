"""Command modules for the conductor CLI."""

from agent_conductor.cli.commands import agents, coordinate, tasks, workflow

__all__ = ["agents", "coordinate", "tasks", "workflow"]
