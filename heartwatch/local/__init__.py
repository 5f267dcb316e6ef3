"""
Local package for Heartwatch.

This package holds the host-local infrastructure: merged configuration,
SQLite persistence, the transport and notification adapters, the
supervisor runtime and the management console.
"""

from .config import effective_settings

__all__ = ["effective_settings"]
