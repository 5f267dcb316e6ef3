"""
This module initializes the local database management system.
It exposes the database managers for components and logs.
"""

from .log import LogDBManager
from .component import ComponentDBManager

__all__ = ["LogDBManager", "ComponentDBManager"]
