import time
import logging
from typing import Callable, List, Optional

from heartwatch.heartbeat.formatting import format_timestamp
from heartwatch.heartbeat.tasks import PeriodicTask
from heartwatch.local.transport import InboundMessage, Transport, TransportError
from heartwatch.messages import (
    AlertMessage, AlertType, HeartbeatMessage, HeartbeatType, RegisterMessage, UnregisterMessage,
    is_envelope, parse, serialize,
)
from heartwatch.registry.component import make_component_id

log = logging.getLogger(__name__)


class HeartbeatAgent:
    """
    The component side of the heartbeat protocol.

    Registers a component with the supervisor, answers its heartbeat
    requests (structured or the plain-text sentinel), periodically checks
    that the supervisor itself answers, and raises a no-data alert when the
    component's own data feed has been silent too long. Any other payload
    arriving on the component's topic counts as data.
    """

    def __init__(self, transport: Transport, name: str, node: str, topic: str, supervisor_topic: str,
                 supervisor_id: Optional[str] = None, sentinel: str = "HEARTBEAT",
                 heartbeat_interval: float = 5 * 60, no_data_threshold: float = 10 * 60,
                 data_check_interval: float = 60, category: Optional[str] = None,
                 clock: Callable[[], float] = time.time) -> None:
        self.transport = transport
        self.name = name
        self.node = node
        self.topic = topic
        self.supervisor_topic = supervisor_topic
        self.supervisor_id = supervisor_id
        self.sentinel = sentinel
        self.heartbeat_interval = heartbeat_interval
        self.no_data_threshold = no_data_threshold
        self.data_check_interval = data_check_interval
        self.category = category
        self._clock = clock

        self.last_request_sent = 0.0
        self.last_response_received = 0.0
        self.last_data_received = clock()
        self.no_data_alerted = False
        self._tasks: List[PeriodicTask] = []

    @property
    def component_id(self) -> str:
        return make_component_id(self.node, self.name)

    #* --- Lifecycle ---
    def start(self) -> None:
        self.transport.subscribe([self.topic], self.on_message)
        self.register()
        self._tasks = [
            PeriodicTask(f"AgentHeartbeat-{self.name}", self.heartbeat_interval, self.send_heartbeat_request,
                         fixed_rate=True, initial_delay=self.heartbeat_interval),
            PeriodicTask(f"AgentDataCheck-{self.name}", self.data_check_interval, self.check_data_feed,
                         fixed_rate=True),
        ]
        for task in self._tasks:
            task.start()

    def stop(self, reason: Optional[str] = None) -> None:
        for task in self._tasks:
            task.stop()
        if reason is not None:
            self.unregister(reason)

    #* --- Outbound ---
    def _send(self, text: str) -> bool:
        try:
            self.transport.publish(self.supervisor_topic, text)
            return True
        except TransportError as e:
            log.error(f"Failed to send message to supervisor on '{self.supervisor_topic}': {e}")
            return False

    def register(self) -> bool:
        message = RegisterMessage(name=self.name, node=self.node, topic=self.topic, category=self.category)
        return self._send(serialize(message))

    def unregister(self, reason: str) -> bool:
        return self._send(serialize(UnregisterMessage(name=self.name, node=self.node, reason=reason)))

    def send_heartbeat_request(self) -> bool:
        """Checks that the supervisor is alive."""
        request = HeartbeatMessage(
            name=self.name, node=self.node, subtype=HeartbeatType.REQUEST,
            target_component_id=self.supervisor_id,
        )
        self.last_request_sent = self._clock()
        return self._send(serialize(request))

    def send_alert(self, text: str, alert_type: AlertType) -> bool:
        alert = AlertMessage(name=self.name, node=self.node, message_body=text, alert_type=alert_type)
        return self._send(serialize(alert))

    def _respond(self) -> bool:
        response = HeartbeatMessage(
            name=self.name, node=self.node, subtype=HeartbeatType.RESPONSE,
            target_component_id=self.component_id,
        )
        return self._send(serialize(response))

    #* --- Inbound ---
    def on_message(self, message: InboundMessage) -> None:
        self.handle(message.payload)

    def handle(self, payload: str) -> None:
        if not payload or not payload.strip():
            log.debug("Empty payload, not processing.")
            return
        payload = payload.strip()

        if not is_envelope(payload):
            if payload == self.sentinel:
                self._respond()
            else:
                self.record_data()
            return

        message = parse(payload, self.sentinel)
        if not isinstance(message, HeartbeatMessage):
            log.debug(f"Agent does not process {type(message).__name__}; ignoring.")
            return
        if message.is_request:
            if message.target_component_id in (None, self.component_id):
                self._respond()
            else:
                log.debug(f"Heartbeat request addressed to {message.target_component_id!r}, not to {self.component_id}")
        elif message.is_response and message.component_id != self.component_id:
            self.last_response_received = self._clock()
            log.debug("Heartbeat response received from supervisor")

    def record_data(self) -> None:
        self.last_data_received = self._clock()
        self.no_data_alerted = False

    #* --- Data Feed ---
    def check_data_feed(self) -> bool:
        """
        Raises a no-data alert if the data feed has been silent too long.

        One alert is sent per silent stretch; the next one only after data
        has been seen again.

        :return: True if an alert was sent.
        """
        silent_for = self._clock() - self.last_data_received
        if silent_for <= self.no_data_threshold or self.no_data_alerted:
            return False
        text = (f"Data from producer last seen: {format_timestamp(self.last_data_received)}.\n"
                f"Threshold: {self.no_data_threshold:.0f} (s)")
        self.no_data_alerted = self.send_alert(text, AlertType.NO_DATA_THRESHOLD_EXCEEDED)
        return self.no_data_alerted
