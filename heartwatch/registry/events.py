import logging
import threading
from enum import Enum
from typing import Callable, List, NamedTuple

log = logging.getLogger(__name__)


class RegistryEventKind(Enum):
    REGISTERED = "registered"
    UNREGISTERED = "unregistered"


class RegistryEvent(NamedTuple):
    kind: RegistryEventKind
    component_id: str


RegistryListener = Callable[[RegistryEvent], None]


class RegistryEventBus:
    """
    Delivers registry events synchronously, in subscription order.

    A listener that raises is logged and skipped so the remaining
    listeners still observe the event.
    """

    def __init__(self) -> None:
        self._listeners: List[RegistryListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: RegistryListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: RegistryListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, event: RegistryEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                log.error(f"Registry listener {listener!r} failed on {event.kind.value} "
                          f"for '{event.component_id}': {e}", exc_info=True)
