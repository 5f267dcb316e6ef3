import threading
from enum import Enum
from typing import Dict, Optional, Set


class ComponentState(Enum):
    UNKNOWN = "Unknown"
    HEALTHY = "Healthy"
    ON_ALERT = "OnAlert"


class LastHeardTable:
    """
    Component id -> time of the last heartbeat ack.

    Entries seeded at discovery or registration count as tracked but not
    acknowledged until a real ack arrives.
    """

    def __init__(self) -> None:
        self._times: Dict[str, float] = {}
        self._acknowledged: Set[str] = set()
        self._lock = threading.Lock()

    def record_ack(self, component_id: str, when: float) -> None:
        with self._lock:
            self._times[component_id] = when
            self._acknowledged.add(component_id)

    def seed(self, component_id: str, when: float) -> bool:
        """Adds an entry only if the component has none. Returns True if added."""
        with self._lock:
            if component_id in self._times:
                return False
            self._times[component_id] = when
            return True

    def remove(self, component_id: str) -> bool:
        with self._lock:
            self._acknowledged.discard(component_id)
            return self._times.pop(component_id, None) is not None

    def get(self, component_id: str) -> Optional[float]:
        with self._lock:
            return self._times.get(component_id)

    def is_acknowledged(self, component_id: str) -> bool:
        with self._lock:
            return component_id in self._acknowledged

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._times)

    def clear(self) -> None:
        with self._lock:
            self._times.clear()
            self._acknowledged.clear()

    def __contains__(self, component_id: str) -> bool:
        with self._lock:
            return component_id in self._times

    def __len__(self) -> int:
        with self._lock:
            return len(self._times)
