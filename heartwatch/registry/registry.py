import time
import logging
import threading
import dataclasses
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from heartwatch.registry.component import MonitoredComponent
from heartwatch.registry.events import RegistryEvent, RegistryEventBus, RegistryEventKind, RegistryListener

log = logging.getLogger(__name__)


class UnknownComponentError(KeyError):
    """Raised when an operation names a component id that is not registered."""

    def __init__(self, component_id: str) -> None:
        super().__init__(component_id)
        self.component_id = component_id

    def __str__(self) -> str:
        return f"Component not found in registry: {self.component_id}"


class ComponentRegistry:
    """
    The authoritative set of monitored components, keyed by compound id.

    All mutation of a component's alert and liveness fields goes through
    this class. Reads return copies, so callers cannot change state behind
    the registry's back. Registered/Unregistered events are delivered to
    subscribers before `register`/`unregister` return.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._components: Dict[str, MonitoredComponent] = {}
        self._lock = threading.RLock()
        self._events = RegistryEventBus()
        self._clock = clock

    #* --- Subscriptions ---
    def subscribe(self, listener: RegistryListener) -> None:
        self._events.subscribe(listener)

    def unsubscribe(self, listener: RegistryListener) -> None:
        self._events.unsubscribe(listener)

    #* --- Registration ---
    def load(self, components: Iterable[MonitoredComponent]) -> int:
        """
        Seeds the registry from the persistent store without emitting events.

        :param components: Components previously stored.
        :return: The number of components loaded.
        """
        count = 0
        with self._lock:
            for component in components:
                if component is None or not component.is_valid():
                    log.warning(f"Skipping invalid stored component: {component!r}")
                    continue
                log.info(f"Loaded component from store: {component.id}")
                self._components[component.id] = component
                count += 1
        return count

    def register(self, component: Optional[MonitoredComponent]) -> bool:
        """
        Adds a component, or refreshes the description of one already registered.

        A re-registered component keeps its alert and restart state.

        :param component: The component to register.
        :return: False if the component is missing its name or node.
        """
        if component is None or not component.is_valid():
            log.info(f"Refusing to register invalid component: {component!r}")
            return False

        with self._lock:
            existing = self._components.get(component.id)
            if existing is None:
                self._components[component.id] = component
                log.info(f"Registered component: {component.id}")
            else:
                existing.update_description(component)
                log.info(f"Re-registered component: {component.id}")
            self._events.publish(RegistryEvent(RegistryEventKind.REGISTERED, component.id))
        return True

    def register_from_file(self, path: Union[str, Path]) -> int:
        """
        Registers every component listed in a registration file that is not
        already present.

        Blank lines and lines starting with '#' are skipped.

        :param path: The registration file.
        :return: The number of components newly registered.
        :raises OSError: If the file cannot be opened or read.
        """
        path = Path(path)
        records = registered = failures = 0
        log.info(f"Registering new components listed in {path}...")

        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                records += 1
                component = MonitoredComponent.from_record(line)
                if component is None:
                    failures += 1
                    continue
                with self._lock:
                    if component.id in self._components:
                        log.info(f"Skipping, already registered: {component.id}")
                        continue
                    if self.register(component):
                        registered += 1
                    else:
                        failures += 1

        log.info(f"Registered {registered} of {records} components in {path} with {failures} failures")
        return registered

    def unregister(self, component: Union[MonitoredComponent, str]) -> bool:
        """
        Removes a component.

        :param component: The component, or its id.
        :return: False if it was not registered.
        """
        component_id = component if isinstance(component, str) else component.id
        with self._lock:
            removed = self._components.pop(component_id, None)
            if removed is None:
                log.debug(f"Component '{component_id}' was not found, so not removing.")
                return False
            log.info(f"Unregistered component: {component_id}")
            self._events.publish(RegistryEvent(RegistryEventKind.UNREGISTERED, component_id))
        return True

    #* --- Queries ---
    def get(self, component_id: str) -> MonitoredComponent:
        with self._lock:
            return dataclasses.replace(self._require(component_id))

    def contains(self, component_id: str) -> bool:
        with self._lock:
            return component_id in self._components

    def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._components.keys())

    def count(self) -> int:
        with self._lock:
            return len(self._components)

    def components(self) -> List[MonitoredComponent]:
        """A snapshot of every registered component."""
        with self._lock:
            return [dataclasses.replace(c) for c in self._components.values()]

    def find_ids_by_name(self, name: str) -> List[str]:
        """Ids of every component registered under `name`, on any node."""
        with self._lock:
            return [cid for cid, c in self._components.items() if c.name == name]

    def alert_time_of(self, component_id: str) -> float:
        with self._lock:
            return self._require(component_id).last_alert_time

    def is_on_alert(self, component_id: str) -> bool:
        with self._lock:
            return self._require(component_id).on_alert

    #* --- Alert state ---
    def mark_alert(self, component_id: str) -> None:
        """Records the start of an alert episode for a component."""
        with self._lock:
            component = self._require(component_id)
            now = self._clock()
            component.alert_count += 1
            component.last_alert_time = now
            component.alert_started_time = now
            component.on_alert = True

    def record_reminder(self, component_id: str) -> None:
        """Refreshes the alert time after a reminder has gone out."""
        with self._lock:
            self._require(component_id).last_alert_time = self._clock()

    def clear_alert(self, component_id: str) -> None:
        with self._lock:
            component = self._require(component_id)
            component.on_alert = False
            component.live = True

    def set_live(self, component_id: str, live: bool) -> None:
        with self._lock:
            self._require(component_id).live = live

    def begin_remediation(self, component_id: str) -> None:
        """Marks a component not-live and stamps the restart attempt."""
        with self._lock:
            component = self._require(component_id)
            component.live = False
            component.remediation_in_progress = True
            component.last_restart_time = self._clock()

    def end_remediation(self, component_id: str) -> None:
        """Marks a component live again once remediation has been attempted."""
        with self._lock:
            component = self._components.get(component_id)
            if component is None:
                log.info(f"Component '{component_id}' was unregistered during remediation.")
                return
            component.live = True
            component.remediation_in_progress = False

    def _require(self, component_id: str) -> MonitoredComponent:
        component = self._components.get(component_id)
        if component is None:
            raise UnknownComponentError(component_id)
        return component
