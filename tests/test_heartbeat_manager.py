import logging
import threading
import time

import pytest

from conftest import SUPERVISOR_TOPIC, RecordingSink, make_component
from heartwatch.actuator import RemediationReport
from heartwatch.agent import HeartbeatAgent
from heartwatch.heartbeat import ComponentState, HeartbeatManager, HeartbeatSettings
from heartwatch.local.notify import AlertDispatcher
from heartwatch.local.transport import InMemoryTransport, TransportError
from heartwatch.messages import (
    AlertMessage, AlertType, HeartbeatMessage, HeartbeatType, RegisterMessage, UnregisterMessage, parse, serialize,
)
from heartwatch.registry import UnknownComponentError


def response_from(component, target=True):
    return serialize(HeartbeatMessage(
        name=component.name, node=component.node, subtype=HeartbeatType.RESPONSE,
        target_component_id=component.id if target else None,
    ))


class RecordingAppManager:
    def __init__(self):
        self.remediated = []

    def remediate(self, component):
        self.remediated.append(component.id)
        report = RemediationReport(component.id)
        report.add("stop", "Stopped")
        report.add("start", "Start attempted")
        report.add("status", "Running")
        return report


class FailingTransport(InMemoryTransport):
    def publish(self, topic, text, sender=None):
        if topic == "broken":
            raise TransportError("broker unreachable")
        super().publish(topic, text, sender)


#* --- Staleness ---
def test_silent_component_alerts_exactly_once(manager, registry, sink, clock):
    component = make_component()
    registry.register(component)

    clock.advance(61)
    manager.evaluate_components()
    assert registry.is_on_alert(component.id)
    assert registry.get(component.id).alert_count == 1
    assert len(sink.notifications) == 1
    assert sink.notifications[0][3] is True
    assert "Alert for component: 'node1-ingest'" in sink.bodies[0]

    clock.advance(4)
    manager.evaluate_components()
    assert registry.get(component.id).alert_count == 1
    assert len(sink.notifications) == 1


def test_component_within_threshold_is_not_alerted(manager, registry, sink, clock):
    registry.register(make_component())
    clock.advance(60)
    manager.evaluate_components()

    assert sink.notifications == []
    assert manager.state_of("node1-ingest") is ComponentState.UNKNOWN


def test_recovery_reports_downtime_and_clears_alert(manager, registry, transport, sink, clock):
    component = make_component()
    registry.register(component)
    clock.advance(61)
    manager.evaluate_components()

    clock.advance(125)
    transport.publish(SUPERVISOR_TOPIC, response_from(component))

    assert not registry.is_on_alert(component.id)
    assert manager.state_of(component.id) is ComponentState.HEALTHY
    assert "Component recovered, was down for 2m5s." in sink.bodies[-1]
    assert sink.notifications[-1][3] is True
    assert manager.stats.recoveries == 1

    clock.advance(10)
    manager.evaluate_components()
    assert len(sink.notifications) == 2


def test_reminder_after_interval(manager, registry, sink, clock):
    component = make_component()
    registry.register(component)
    clock.advance(61)
    manager.evaluate_components()
    alerted_at = clock.now

    clock.advance(3600)
    manager.evaluate_components()
    assert len(sink.notifications) == 1

    clock.advance(1)
    manager.evaluate_components()
    assert len(sink.notifications) == 2
    assert "still not responding" in sink.bodies[-1]
    assert sink.notifications[-1][3] is False

    refreshed = registry.get(component.id)
    assert refreshed.alert_count == 1
    assert refreshed.alert_started_time == alerted_at
    assert refreshed.last_alert_time == clock.now


class BlockingSink(RecordingSink):
    """Holds every delivery until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def notify(self, recipient_group, subject, body, force_immediate=False):
        self.entered.set()
        self.release.wait(5)
        super().notify(recipient_group, subject, body, force_immediate)


def test_slow_sink_does_not_hold_up_acks(registry, transport, settings, clock):
    sink = BlockingSink()
    dispatcher = AlertDispatcher([sink], recipient_group="operators", rate_limit_seconds=120, clock=clock)
    manager = HeartbeatManager(registry, transport, dispatcher, settings=settings, clock=clock)
    registry.register(make_component("ingest"))
    registry.register(make_component("relay", topic="components.relay"))
    clock.advance(61)
    registry.register(make_component("other", topic="components.other"))

    evaluation = threading.Thread(target=manager.evaluate_components, daemon=True)
    evaluation.start()
    try:
        assert sink.entered.wait(5)
        started = time.monotonic()
        manager.record_ack("node1-other")
        assert time.monotonic() - started < 1
        assert manager.state_of("node1-other") is ComponentState.HEALTHY
    finally:
        sink.release.set()
        evaluation.join(5)

    assert not evaluation.is_alive()
    assert len(sink.notifications) == 2
    assert registry.is_on_alert("node1-ingest")
    assert registry.is_on_alert("node1-relay")


#* --- Discovery ---
def test_discovery_seeds_silent_components(manager, registry, sink, clock):
    registry.load([make_component("ingest"), make_component("relay", topic="components.relay")])
    assert manager.tracked_count() == 0

    assert manager.discover(grace_period=0) == 2
    assert manager.discovered

    clock.advance(61)
    manager.evaluate_components()
    clock.advance(30)
    manager.evaluate_components()

    assert len(sink.notifications) == 2
    assert all(registry.get(cid).alert_count == 1 for cid in registry.list_ids())


def test_discovery_counts_components_answering_during_grace(manager, registry, transport, clock):
    registry.load([make_component("ingest"), make_component("relay", topic="components.relay")])
    agent = HeartbeatAgent(transport, "ingest", "node1", "components.ingest", SUPERVISOR_TOPIC, clock=clock)
    transport.subscribe([agent.topic], agent.on_message)

    assert manager.discover(grace_period=0) == 1
    assert manager.state_of("node1-ingest") is ComponentState.HEALTHY
    assert manager.state_of("node1-relay") is ComponentState.UNKNOWN


#* --- Probing ---
def test_probes_go_to_each_component_topic(manager, registry, transport):
    registry.register(make_component("ingest"))
    registry.register(make_component("relay", topic="components.relay"))
    registry.register(make_component("quiet", topic=None))

    assert manager.send_heartbeats() == 2
    probe = parse(transport.messages_on("components.relay")[0])
    assert probe.is_request
    assert probe.target_component_id == "node1-relay"
    assert probe.component_id == manager.identity


def test_probe_failure_is_counted_and_does_not_stop_the_pass(registry, dispatcher, settings, clock):
    transport = FailingTransport()
    manager = HeartbeatManager(registry, transport, dispatcher, settings=settings, clock=clock)
    registry.register(make_component("ingest", topic="broken"))
    registry.register(make_component("relay", topic="components.relay"))

    assert manager.send_heartbeats() == 1
    assert manager.stats.probe_failures == 1


#* --- Inbound ---
def test_legacy_sentinel_is_equivalent_to_a_response(manager, registry, transport, sink, clock):
    structured, legacy = make_component("ingest"), make_component("relay", topic="components.relay")
    registry.register(structured)
    registry.register(legacy)
    clock.advance(61)
    manager.evaluate_components()

    clock.advance(5)
    transport.publish(SUPERVISOR_TOPIC, response_from(structured))
    transport.publish(SUPERVISOR_TOPIC, "HEARTBEAT", sender="relay")

    for component in (structured, legacy):
        assert manager.state_of(component.id) is ComponentState.HEALTHY
        assert manager.last_heard(component.id) == clock.now
    assert manager.stats.recoveries == 2


def test_legacy_sentinel_without_sender_is_dropped(manager, registry):
    registry.register(make_component())
    manager.handle_inbound("HEARTBEAT")

    assert manager.stats.dropped_messages == 1
    assert manager.stats.acks_received == 0


def test_senderless_sentinel_warns_once(manager, registry, caplog):
    registry.register(make_component())
    with caplog.at_level(logging.DEBUG, logger="heartwatch.heartbeat.manager"):
        manager.handle_inbound("HEARTBEAT")
        manager.handle_inbound("HEARTBEAT")
        manager.handle_inbound("HEARTBEAT")

    assert manager.stats.dropped_messages == 3
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "without sender information" in warnings[0].getMessage()


def test_plain_component_id_counts_as_ack(manager, registry):
    registry.register(make_component())
    manager.handle_inbound("node1-ingest")

    assert manager.state_of("node1-ingest") is ComponentState.HEALTHY


def test_response_resolved_by_sender_when_target_missing(manager, registry):
    component = make_component()
    registry.register(component)
    manager.handle_inbound(response_from(component, target=False))

    assert manager.stats.acks_received == 1


def test_response_from_unregistered_component_is_dropped(manager, registry):
    manager.handle_inbound(response_from(make_component("ghost", "node9")))

    assert manager.stats.dropped_messages == 1
    assert registry.count() == 0
    assert manager.tracked_count() == 0


def test_request_addressed_to_supervisor_is_answered(manager, registry, transport):
    component = make_component()
    registry.register(component)
    request = HeartbeatMessage(name=component.name, node=component.node, subtype=HeartbeatType.REQUEST,
                               target_component_id=manager.identity)
    transport.publish(SUPERVISOR_TOPIC, serialize(request))

    replies = [parse(text) for text in transport.messages_on(component.topic)]
    assert len(replies) == 1
    assert replies[0].is_response
    assert replies[0].target_component_id == manager.identity


def test_request_for_someone_else_is_ignored(manager, registry, transport):
    component = make_component()
    registry.register(component)
    request = HeartbeatMessage(name=component.name, node=component.node, subtype=HeartbeatType.REQUEST,
                               target_component_id="node2-other")
    transport.publish(SUPERVISOR_TOPIC, serialize(request))

    assert transport.messages_on(component.topic) == []


def test_register_and_unregister_messages(manager, registry, transport):
    register = RegisterMessage(name="ingest", node="node1", topic="components.ingest", category="Consumer")
    transport.publish(SUPERVISOR_TOPIC, serialize(register))
    assert registry.contains("node1-ingest")
    assert "node1-ingest" in manager.tracked_ids()

    transport.publish(SUPERVISOR_TOPIC, serialize(UnregisterMessage(name="ingest", node="node1", reason="maintenance")))
    assert not registry.contains("node1-ingest")
    assert manager.tracked_count() == 0

    transport.publish(SUPERVISOR_TOPIC, serialize(UnregisterMessage(name="ingest", node="node1")))
    assert manager.stats.dropped_messages == 1


def test_reregistering_an_alerted_component_recovers_it(manager, registry, transport, sink, clock):
    component = make_component()
    registry.register(component)
    clock.advance(61)
    manager.evaluate_components()
    registry.begin_remediation(component.id)
    restarted_at = clock.now
    assert registry.get(component.id).alert_count == 1

    clock.advance(30)
    register = RegisterMessage(name="ingest", node="node1", topic="components.ingest.v2", category="Consumer")
    transport.publish(SUPERVISOR_TOPIC, serialize(register))

    refreshed = registry.get(component.id)
    assert refreshed.topic == "components.ingest.v2"
    assert refreshed.alert_count == 1
    assert not refreshed.on_alert
    assert refreshed.remediation_in_progress
    assert refreshed.last_restart_time == restarted_at
    assert manager.stats.recoveries == 1
    assert "Component recovered, was down for 30s." in sink.bodies[-1]
    assert sink.notifications[-1][3] is True

    transport.publish(SUPERVISOR_TOPIC, response_from(component))
    assert registry.get(component.id).alert_count == 1
    assert manager.stats.recoveries == 1
    assert len(sink.notifications) == 2


def test_reregistering_refreshes_last_heard(manager, registry, transport, sink, clock):
    registry.register(make_component())
    clock.advance(50)
    register = RegisterMessage(name="ingest", node="node1", topic="components.ingest")
    transport.publish(SUPERVISOR_TOPIC, serialize(register))

    clock.advance(15)
    manager.evaluate_components()

    assert not registry.is_on_alert("node1-ingest")
    assert manager.state_of("node1-ingest") is ComponentState.HEALTHY
    assert sink.notifications == []


def test_component_alert_is_forwarded(manager, registry, transport, sink):
    registry.register(make_component())
    alert = AlertMessage(name="ingest", node="node1", message_body="No data for 10m",
                         alert_type=AlertType.NO_DATA_THRESHOLD_EXCEEDED)
    transport.publish(SUPERVISOR_TOPIC, serialize(alert))

    assert len(sink.notifications) == 1
    assert "NO_DATA_THRESHOLD_EXCEEDED" in sink.bodies[0]
    assert "No data for 10m" in sink.bodies[0]


def test_garbage_is_dropped(manager):
    manager.handle_inbound("{not json")
    manager.handle_inbound("")
    assert manager.stats.dropped_messages == 2


def test_record_ack_for_unknown_component_raises(manager):
    with pytest.raises(UnknownComponentError):
        manager.record_ack("node9-ghost")


#* --- Remediation ---
def build_remediating_manager(registry, transport, clock, sink=None):
    sink = sink or RecordingSink()
    dispatcher = AlertDispatcher([sink], clock=clock)
    app_manager = RecordingAppManager()
    settings = HeartbeatSettings(name="heartwatch", node="supervisor-host", discovery_grace_period=0)
    manager = HeartbeatManager(registry, transport, dispatcher, app_manager, settings, clock=clock)
    return manager, app_manager, sink


def test_remediation_after_period_before_restart(registry, transport, clock):
    manager, app_manager, sink = build_remediating_manager(registry, transport, clock)
    registry.register(make_component())
    clock.advance(61)
    manager.evaluate_components()

    clock.advance(300)
    manager.evaluate_components()
    assert app_manager.remediated == []

    clock.advance(1)
    manager.evaluate_components()
    assert manager.wait_for_remediations(timeout=5)
    assert app_manager.remediated == ["node1-ingest"]
    assert "Steps taken to restart service" in sink.bodies[-1]

    component = registry.get("node1-ingest")
    assert component.last_restart_time == clock.now
    assert component.live
    assert not component.remediation_in_progress


def test_remediation_is_not_repeated_within_period(registry, transport, clock):
    manager, app_manager, _ = build_remediating_manager(registry, transport, clock)
    registry.register(make_component())
    clock.advance(61)
    manager.evaluate_components()
    clock.advance(301)
    manager.evaluate_components()
    manager.wait_for_remediations(timeout=5)

    clock.advance(10)
    manager.evaluate_components()
    manager.wait_for_remediations(timeout=5)
    assert len(app_manager.remediated) == 1

    clock.advance(300)
    manager.evaluate_components()
    manager.wait_for_remediations(timeout=5)
    assert len(app_manager.remediated) == 2


def test_no_remediation_after_stop(registry, transport, clock):
    manager, app_manager, _ = build_remediating_manager(registry, transport, clock)
    registry.register(make_component())
    clock.advance(61)
    manager.evaluate_components()

    assert manager.stop(timeout=1)
    clock.advance(400)
    manager.evaluate_components()
    assert app_manager.remediated == []


def test_remediation_disabled(registry, transport, clock):
    manager, app_manager, _ = build_remediating_manager(registry, transport, clock)
    manager.settings.remediation_enabled = False
    registry.register(make_component())
    clock.advance(61)
    manager.evaluate_components()
    clock.advance(400)
    manager.evaluate_components()

    assert app_manager.remediated == []


#* --- Lifecycle ---
def test_start_and_stop_loops(manager, registry, transport):
    registry.register(make_component())
    manager.start(run_discovery=False)
    assert manager.is_running()

    deadline = time.monotonic() + 5
    while not transport.messages_on("components.ingest") and time.monotonic() < deadline:
        time.sleep(0.01)

    assert manager.stop(timeout=5)
    assert not manager.is_running()
    assert len(transport.messages_on("components.ingest")) >= 1


def test_stop_during_discovery_skips_loops(registry, transport, dispatcher, clock):
    settings = HeartbeatSettings(discovery_grace_period=30)
    manager = HeartbeatManager(registry, transport, dispatcher, settings=settings, clock=clock)
    manager.start()

    assert manager.stop(timeout=5)
    assert not manager.is_running()
    assert manager._tasks == []


def test_unregistered_component_is_forgotten(manager, registry):
    registry.register(make_component())
    registry.unregister("node1-ingest")

    assert manager.tracked_count() == 0
    assert manager.state_of("node1-ingest") is ComponentState.UNKNOWN
