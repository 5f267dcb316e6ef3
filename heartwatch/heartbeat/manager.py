import time
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from heartwatch.actuator import AppManager
from heartwatch.heartbeat.formatting import format_duration, format_timestamp
from heartwatch.heartbeat.state import ComponentState, LastHeardTable
from heartwatch.heartbeat.tasks import PeriodicTask, join_all
from heartwatch.local.notify import AlertDispatcher
from heartwatch.local.transport import InboundMessage, Transport, TransportError
from heartwatch.messages import (
    AlertMessage, HeartbeatMessage, HeartbeatType, MessageKind, RegisterMessage, UnregisterMessage,
    is_envelope, parse, serialize,
)
from heartwatch.registry import (
    ComponentRegistry, MonitoredComponent, RegistryEvent, RegistryEventKind, UnknownComponentError,
    make_component_id,
)

log = logging.getLogger(__name__)


@dataclass
class HeartbeatSettings:
    """Timing and identity of the heartbeat manager. All times in seconds."""
    name: str = "heartwatch"
    node: str = "localhost"
    send_interval: float = 30
    evaluation_interval: float = 5
    stale_threshold: float = 60
    reminders_interval: float = 60 * 60
    period_before_restart: float = 5 * 60
    discovery_grace_period: float = 35
    sentinel: str = "HEARTBEAT"
    remediation_enabled: bool = True
    shutdown_timeout: float = 10

    @classmethod
    def from_config(cls, config: Any) -> "HeartbeatSettings":
        return cls(
            name=config.SUPERVISOR_NAME,
            node=config.SUPERVISOR_NODE,
            send_interval=config.HEARTBEAT_SEND_INTERVAL,
            evaluation_interval=config.EVALUATION_INTERVAL,
            stale_threshold=config.STALE_THRESHOLD,
            reminders_interval=config.REMINDERS_INTERVAL,
            period_before_restart=config.PERIOD_BEFORE_RESTART,
            discovery_grace_period=config.DISCOVERY_GRACE_PERIOD,
            sentinel=config.LEGACY_HEARTBEAT_SENTINEL,
            remediation_enabled=config.REMEDIATION_ENABLED,
            shutdown_timeout=config.SHUTDOWN_TIMEOUT,
        )


@dataclass
class ManagerStats:
    probes_sent: int = 0
    probe_failures: int = 0
    acks_received: int = 0
    dropped_messages: int = 0
    alerts_raised: int = 0
    reminders_sent: int = 0
    recoveries: int = 0
    remediations: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class HeartbeatManager:
    """
    Probes registered components, tracks when each was last heard from and
    drives the alert, reminder, recovery and remediation transitions.

    Lock order is cycle lock, then registry, then the last-heard table. The
    cycle lock is held for a whole probe or evaluation pass so the two never
    interleave, and by the ack path when it clears an alert. Notifications
    raised under the cycle lock are delivered after it is released.
    """

    def __init__(self, registry: ComponentRegistry, transport: Transport, dispatcher: AlertDispatcher,
                 app_manager: Optional[AppManager] = None, settings: HeartbeatSettings = None,
                 clock: Callable[[], float] = time.time) -> None:
        self.registry = registry
        self.transport = transport
        self.dispatcher = dispatcher
        self.app_manager = app_manager
        self.settings = settings or HeartbeatSettings()
        self.stats = ManagerStats()
        self._clock = clock

        self._last_heard = LastHeardTable()
        self._cycle_lock = threading.RLock()
        self._cycle_state = threading.local()
        self._warned_senderless_sentinel = False
        self._stop_event = threading.Event()
        self._tasks: List[PeriodicTask] = []
        self._startup_thread: Optional[threading.Thread] = None
        self._remediations: List[threading.Thread] = []
        self._discovered = False

        self.registry.subscribe(self._on_registry_event)

    @property
    def identity(self) -> str:
        return make_component_id(self.settings.node, self.settings.name)

    #* --- Lifecycle ---
    def start(self, run_discovery: bool = True) -> None:
        """
        Runs discovery and then starts the probe and evaluation loops, all on
        a background thread so the caller is not held up by the grace period.
        """
        if self.is_running():
            log.warning("Heartbeat manager is already running.")
            return
        self._stop_event.clear()
        self._startup_thread = threading.Thread(
            target=self._startup, args=(run_discovery,), daemon=True, name="HeartbeatStartupThread"
        )
        self._startup_thread.start()

    def _startup(self, run_discovery: bool) -> None:
        if run_discovery:
            self.discover()
        if self._stop_event.is_set():
            log.info("Shutdown requested during discovery; periodic loops not started.")
            return
        self.start_loops()

    def start_loops(self) -> None:
        self._tasks = [
            PeriodicTask("HeartbeatProbeThread", self.settings.send_interval, self.send_heartbeats, fixed_rate=True),
            PeriodicTask("HeartbeatEvaluationThread", self.settings.evaluation_interval, self.evaluate_components),
        ]
        for task in self._tasks:
            task.start()
        log.info(f"Heartbeat loops started: probing every {self.settings.send_interval}s, "
                 f"evaluating every {self.settings.evaluation_interval}s")

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Cancels the periodic loops and waits for them, bounded by `timeout`.

        Remediations already running are left to finish; no new ones start.

        :return: True if every loop stopped within the timeout.
        """
        timeout = self.settings.shutdown_timeout if timeout is None else timeout
        self._stop_event.set()
        started = time.monotonic()
        if self._startup_thread is not None:
            self._startup_thread.join(timeout)

        for task in self._tasks:
            task.stop()
        remaining = max(0.0, timeout - (time.monotonic() - started))
        stopped = join_all(self._tasks, remaining) and not (
            self._startup_thread is not None and self._startup_thread.is_alive()
        )
        if not stopped:
            log.warning(f"Heartbeat loops did not stop within {timeout}s; abandoning them.")
        else:
            log.info("Heartbeat manager stopped.")
        self._tasks = []
        return stopped

    def close(self) -> None:
        self.stop()
        self.registry.unsubscribe(self._on_registry_event)

    @property
    def discovered(self) -> bool:
        return self._discovered

    def is_running(self) -> bool:
        startup_alive = self._startup_thread is not None and self._startup_thread.is_alive()
        return startup_alive or any(task.is_alive() for task in self._tasks)

    #* --- Introspection ---
    def tracked_count(self) -> int:
        return len(self._last_heard)

    def tracked_ids(self) -> List[str]:
        return list(self._last_heard.snapshot().keys())

    def last_heard(self, component_id: str) -> Optional[float]:
        return self._last_heard.get(component_id)

    def state_of(self, component_id: str) -> ComponentState:
        if not self._last_heard.is_acknowledged(component_id) and not self._is_on_alert(component_id):
            return ComponentState.UNKNOWN
        return ComponentState.ON_ALERT if self._is_on_alert(component_id) else ComponentState.HEALTHY

    def _is_on_alert(self, component_id: str) -> bool:
        try:
            return self.registry.is_on_alert(component_id)
        except UnknownComponentError:
            return False

    #* --- Registry Events ---
    def _on_registry_event(self, event: RegistryEvent) -> None:
        if event.kind is RegistryEventKind.REGISTERED:
            if self._last_heard.seed(event.component_id, self._clock()):
                log.debug(f"Tracking newly registered component '{event.component_id}'")
        elif event.kind is RegistryEventKind.UNREGISTERED:
            if self._last_heard.remove(event.component_id):
                log.debug(f"Stopped tracking '{event.component_id}'")

    #* --- Discovery ---
    def discover(self, grace_period: Optional[float] = None) -> int:
        """
        Probes every registered component, waits for responses, then seeds
        a last-heard entry for every component still without one.

        :param grace_period: Seconds to wait for responses; defaults to the setting.
        :return: The number of components seeded without having responded.
        """
        grace_period = self.settings.discovery_grace_period if grace_period is None else grace_period
        component_ids = self.registry.list_ids()
        log.info(f"Discovery: probing {len(component_ids)} registered components, "
                 f"waiting {grace_period}s for responses...")
        self._probe(component_ids)

        if grace_period > 0:
            self._stop_event.wait(grace_period)

        now = self._clock()
        seeded = sum(1 for cid in self.registry.list_ids() if self._last_heard.seed(cid, now))
        self._discovered = True
        log.info(f"Discovery complete: {self.tracked_count()} components tracked, "
                 f"{seeded} seeded without a response")
        return seeded

    #* --- Probing ---
    def send_heartbeats(self) -> int:
        """Publishes one heartbeat request to every tracked component."""
        with self._cycle():
            return self._probe(self.tracked_ids())

    def _probe(self, component_ids: Iterable[str]) -> int:
        sent = 0
        for component_id in component_ids:
            try:
                component = self.registry.get(component_id)
            except UnknownComponentError:
                continue
            if not component.topic:
                continue

            request = HeartbeatMessage(
                name=self.settings.name,
                node=self.settings.node,
                subtype=HeartbeatType.REQUEST,
                target_component_id=component_id,
            )
            try:
                self.transport.publish(component.topic, serialize(request))
                sent += 1
                self.stats.probes_sent += 1
            except TransportError as e:
                self.stats.probe_failures += 1
                log.error(f"Failed to send heartbeat to '{component_id}' on '{component.topic}': {e}")
        log.debug(f"Sent {sent} heartbeat requests")
        return sent

    #* --- Evaluation ---
    def evaluate_components(self, now: Optional[float] = None) -> None:
        """Applies the staleness state machine to every tracked component."""
        with self._cycle():
            now = self._clock() if now is None else now
            snapshot = self._last_heard.snapshot()
            if not snapshot:
                log.debug("No components tracked, nothing to evaluate")
                return

            for component_id, last_heard in snapshot.items():
                try:
                    self._evaluate(component_id, last_heard, now)
                except UnknownComponentError:
                    self._last_heard.remove(component_id)
                except Exception as e:
                    log.error(f"Error evaluating component '{component_id}': {e}", exc_info=True)

    def _evaluate(self, component_id: str, last_heard: float, now: float) -> None:
        component = self.registry.get(component_id)

        if now - last_heard <= self.settings.stale_threshold:
            if component.on_alert:
                self._recover(component, last_heard)
            return

        if not component.on_alert:
            self._raise_alert(component, last_heard, now)
            return

        if now - component.last_alert_time > self.settings.reminders_interval:
            info = (f"The component is still not responding.\n\n"
                    f"Alert raised at: {format_timestamp(component.alert_started_time)}\n"
                    f"Last ACK: {format_timestamp(last_heard)}\n"
                    f"Silent for: {format_duration(now - last_heard)}")
            self.registry.record_reminder(component_id)
            self.stats.reminders_sent += 1
            self._notify(component, info, force=False)

        self._maybe_remediate(component, now)

    def _raise_alert(self, component: MonitoredComponent, last_heard: float, now: float) -> None:
        log.warning(f"Component '{component.id}' has not responded for {format_duration(now - last_heard)}")
        self.registry.mark_alert(component.id)
        self.stats.alerts_raised += 1
        info = ("The component failed to respond, and may not be functioning properly.\n\n"
                f"Time of alert: {format_timestamp(now)}\n"
                f"Last ACK: {format_timestamp(last_heard)}")
        self._notify(component, info, force=True)

    def _recover(self, component: MonitoredComponent, response_time: float) -> None:
        self.registry.clear_alert(component.id)
        self.stats.recoveries += 1
        downtime = format_duration(response_time - component.alert_started_time)
        log.info(f"Component '{component.id}' recovered after {downtime}")
        info = (f"Component recovered, was down for {downtime}.\n\n"
                f"Time of alert: {format_timestamp(component.alert_started_time)}\n"
                f"Time of response: {format_timestamp(response_time)}\n\n"
                "The component took longer than expected to respond, but appears to be sending ACKs again.")
        self._notify(component, info, force=True)

    #* --- Notification Delivery ---
    @contextmanager
    def _cycle(self) -> Iterator[None]:
        """
        Holds the cycle lock. Notifications raised inside are queued and sent
        once the outermost hold on this thread is released, so slow sinks
        never hold up heartbeat passes or acks.
        """
        state = self._cycle_state
        outermost = not getattr(state, "depth", 0)
        if outermost:
            state.outbox = []
        state.depth = getattr(state, "depth", 0) + 1
        try:
            with self._cycle_lock:
                yield
        finally:
            state.depth -= 1
            if outermost:
                outbox, state.outbox = state.outbox, []
                for component, info, force in outbox:
                    self._deliver(component, info, force)

    def _notify(self, component: MonitoredComponent, info: str, force: bool) -> None:
        state = self._cycle_state
        if getattr(state, "depth", 0):
            state.outbox.append((component, info, force))
        else:
            self._deliver(component, info, force)

    def _deliver(self, component: MonitoredComponent, info: str, force: bool) -> None:
        self.dispatcher.send_component_alert(component.id, info, force=force, node=component.node, name=component.name)

    #* --- Remediation ---
    def _maybe_remediate(self, component: MonitoredComponent, now: float) -> None:
        if not self.settings.remediation_enabled or self.app_manager is None:
            return
        if component.remediation_in_progress or self._stop_event.is_set():
            return
        period = self.settings.period_before_restart
        if now - component.alert_started_time <= period:
            return
        if component.last_restart_time and now - component.last_restart_time <= period:
            return

        log.warning(f"Component '{component.id}' has been on alert longer than {format_duration(period)}; remediating")
        self.registry.begin_remediation(component.id)
        self.stats.remediations += 1
        thread = threading.Thread(target=self._remediate, args=(component,), daemon=True,
                                  name=f"Remediation-{component.id}")
        self._remediations = [t for t in self._remediations if t.is_alive()] + [thread]
        thread.start()

    def _remediate(self, component: MonitoredComponent) -> None:
        try:
            report = self.app_manager.remediate(component)
            self._notify(component, report.summary(), force=True)
        except Exception as e:
            log.error(f"Remediation of '{component.id}' failed: {e}", exc_info=True)
        finally:
            self.registry.end_remediation(component.id)

    def wait_for_remediations(self, timeout: Optional[float] = None) -> bool:
        for thread in list(self._remediations):
            thread.join(timeout)
        return not any(t.is_alive() for t in self._remediations)

    #* --- Inbound Messages ---
    def on_transport_message(self, message: InboundMessage) -> None:
        self.handle_inbound(message.payload, message.sender)

    def handle_inbound(self, payload: str, sender: Optional[str] = None) -> None:
        """
        Handles one payload received from the transport.

        :param payload: The raw text.
        :param sender: The sender's name or id, when the transport knows it.
        """
        message = parse(payload, self.settings.sentinel)

        if isinstance(message, HeartbeatMessage) and not is_envelope(payload):
            # Legacy plain-text sentinel
            if sender is None:
                self._drop_senderless_sentinel()
                return
            component_id = self._resolve(sender)
            if component_id is None:
                self._drop(f"Legacy heartbeat from unknown sender {sender!r}")
                return
            self.record_ack(component_id)
            return

        if message is None:
            candidate = payload.strip() if isinstance(payload, str) else None
            if candidate and self.registry.contains(candidate):
                self.record_ack(candidate)
            else:
                self._drop(f"Unrecognized payload: {str(payload)[:80]!r}")
            return

        if message.kind is MessageKind.HEARTBEAT:
            self._handle_heartbeat(message)
        elif message.kind is MessageKind.REGISTER:
            self._handle_register(message)
        elif message.kind is MessageKind.UNREGISTER:
            self._handle_unregister(message)
        elif message.kind is MessageKind.ALERT:
            self._handle_alert(message)
        else:
            log.debug(f"Ignoring reserved {message.kind.value} message from {message.component_id}")

    def _handle_heartbeat(self, message: HeartbeatMessage) -> None:
        if message.is_request:
            if message.target_component_id != self.identity:
                log.debug(f"Ignoring heartbeat request addressed to {message.target_component_id!r}")
                return
            self._respond_to(message)
            return

        if message.is_response:
            component_id = (self._resolve(message.target_component_id)
                            or self._resolve(message.component_id)
                            or self._resolve(message.name))
            if component_id is None:
                self._drop(f"Heartbeat response from unregistered component {message.component_id!r}")
                return
            self.record_ack(component_id)
            return

        self._drop(f"Heartbeat from {message.component_id!r} without a valid type")

    def _respond_to(self, request: HeartbeatMessage) -> None:
        requester = self._resolve(request.component_id)
        if requester is None:
            self._drop(f"Heartbeat request from unregistered component {request.component_id!r}")
            return
        topic = self.registry.get(requester).topic
        if not topic:
            log.info(f"Cannot answer heartbeat request from '{requester}': no topic registered")
            return
        response = HeartbeatMessage(
            name=self.settings.name,
            node=self.settings.node,
            subtype=HeartbeatType.RESPONSE,
            target_component_id=self.identity,
        )
        try:
            self.transport.publish(topic, serialize(response))
        except TransportError as e:
            log.error(f"Failed to answer heartbeat request from '{requester}': {e}")

    def _handle_register(self, message: RegisterMessage) -> None:
        component = MonitoredComponent.from_register_message(message)
        if not self.registry.register(component):
            self._drop(f"Invalid register message from {message.component_id!r}")
            return
        # A component that registers is alive.
        self.record_ack(component.id)

    def _handle_unregister(self, message: UnregisterMessage) -> None:
        component_id = message.component_id
        if component_id is None or not self.registry.unregister(component_id):
            self._drop(f"Unregister for unknown component {component_id!r}")
            return
        log.info(f"Component '{component_id}' unregistered: {message.reason or 'no reason given'}")

    def _handle_alert(self, message: AlertMessage) -> None:
        component_id = self._resolve(message.component_id)
        if component_id is None:
            self._drop(f"Alert from unregistered component {message.component_id!r}")
            return
        component = self.registry.get(component_id)
        info = f"Component reported {message.alert_type.value}:\n\n{message.message_body}"
        self._notify(component, info, force=False)

    def record_ack(self, component_id: str, when: Optional[float] = None) -> None:
        """
        Records a heartbeat ack and clears an outstanding alert.

        :raises UnknownComponentError: If the component is not registered.
        """
        when = self._clock() if when is None else when
        if not self.registry.contains(component_id):
            raise UnknownComponentError(component_id)
        self._last_heard.record_ack(component_id, when)
        self.stats.acks_received += 1
        log.debug(f"Heartbeat ack from '{component_id}'")

        with self._cycle():
            try:
                component = self.registry.get(component_id)
            except UnknownComponentError:
                return
            if component.on_alert:
                self._recover(component, when)

    def _resolve(self, reference: Optional[str]) -> Optional[str]:
        """Maps a component id or a unique component name to a registered id."""
        if not reference:
            return None
        if self.registry.contains(reference):
            return reference
        matches = self.registry.find_ids_by_name(reference)
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            log.info(f"Name '{reference}' matches several components: {', '.join(matches)}")
        return None

    def _drop_senderless_sentinel(self) -> None:
        self.stats.dropped_messages += 1
        if self._warned_senderless_sentinel:
            log.debug("Dropped plain-text heartbeat without sender information.")
            return
        self._warned_senderless_sentinel = True
        log.warning("Received a plain-text heartbeat without sender information. The transport does not "
                    "identify senders, so such heartbeats are dropped. Components should send a structured "
                    "response or their component id instead. Later occurrences are logged at DEBUG.")

    def _drop(self, reason: str) -> None:
        self.stats.dropped_messages += 1
        log.info(f"Dropped inbound message. {reason}")
