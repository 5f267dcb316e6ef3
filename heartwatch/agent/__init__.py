"""
The component-side heartbeat agent.
"""

from .agent import HeartbeatAgent

__all__ = ["HeartbeatAgent"]
