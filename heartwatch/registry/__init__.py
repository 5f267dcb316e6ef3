"""
The component registry.

Holds every monitored component with its alert and liveness state, and
publishes Registered/Unregistered events to interested subscribers.
"""

from .component import Category, MonitoredComponent, make_component_id
from .events import RegistryEvent, RegistryEventKind
from .registry import ComponentRegistry, UnknownComponentError

__all__ = [
    "Category", "MonitoredComponent", "make_component_id",
    "RegistryEvent", "RegistryEventKind",
    "ComponentRegistry", "UnknownComponentError",
]
