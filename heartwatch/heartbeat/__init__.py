"""
The heartbeat manager.

Schedules probes, detects stale components and drives the alert, recovery
and remediation state machine.
"""

from .formatting import format_duration
from .state import ComponentState, LastHeardTable
from .tasks import PeriodicTask
from .manager import HeartbeatManager, HeartbeatSettings, ManagerStats

__all__ = [
    "format_duration", "ComponentState", "LastHeardTable", "PeriodicTask",
    "HeartbeatManager", "HeartbeatSettings", "ManagerStats",
]
