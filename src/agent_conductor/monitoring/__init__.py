"""Agent monitoring: durable registry, liveness correction and agent logs."""

from agent_conductor.monitoring.liveness import LivenessProbe, is_process_alive
from agent_conductor.monitoring.logger import AgentLogWriter, read_log
from agent_conductor.monitoring.models import AgentNode, AgentRecord, AgentStatus, AgentTelemetry
from agent_conductor.monitoring.monitor import AgentMonitor, open_monitor
from agent_conductor.monitoring.repository import AgentRepository

__all__ = [
    "AgentLogWriter",
    "AgentMonitor",
    "AgentNode",
    "AgentRecord",
    "AgentRepository",
    "AgentStatus",
    "AgentTelemetry",
    "LivenessProbe",
    "is_process_alive",
    "open_monitor",
    "read_log",
]
