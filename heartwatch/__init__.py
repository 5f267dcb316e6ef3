"""
Heartwatch: cluster health supervision.

Tracks registered components, probes them with heartbeats, alerts
operators when one goes silent and drives remediation through the
external lifecycle tool.
"""

__version__ = "1.0.0"
