"""
The supervisor runtime: builds the registry, store, transport, notification
and heartbeat components, and runs them until asked to stop.
"""

from .supervisor import Supervisor

__all__ = ["Supervisor"]
