"""
Logging setup for Heartwatch: console output plus a SQLite log store.
"""

from .setup import setup_logging, MainFormatter

__all__ = ["setup_logging", "MainFormatter"]
