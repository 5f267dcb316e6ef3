import pytest

from conftest import make_component
from heartwatch.registry import (
    Category, ComponentRegistry, MonitoredComponent, RegistryEventKind, UnknownComponentError,
)

REGLIST = """\
# name,node,topic[,category[,path]]
ingest,node1,components.ingest,Consumer
archiver,node1,components.archiver,Camel_Consumer_Archiver,/opt/archiver

relay,node2,components.relay,Bridge
{"mach": {"type": "REGISTER", "name": "collector", "node": "node2", "body": {"topic": "components.collector"}}}
publisher,node3,components.publisher
ingest,node1,components.ingest
relay,node2,components.relay
"""


def test_register_from_file_skips_duplicates(registry, tmp_path):
    path = tmp_path / "reglist.txt"
    path.write_text(REGLIST)

    assert registry.register_from_file(path) == 5
    assert registry.count() == 5
    assert registry.get("node1-archiver").category is Category.CONSUMER_ARCHIVER
    assert registry.get("node1-archiver").path == "/opt/archiver"


def test_register_from_file_skips_already_registered(registry, tmp_path):
    registry.register(make_component("ingest", "node1"))
    path = tmp_path / "reglist.txt"
    path.write_text(REGLIST)

    assert registry.register_from_file(path) == 4


def test_register_from_file_counts_bad_records(registry, tmp_path):
    path = tmp_path / "reglist.txt"
    path.write_text("ingest,node1\nrelay,node2,components.relay\n,node3,topic\n")

    assert registry.register_from_file(path) == 1


def test_missing_registration_file_raises(registry, tmp_path):
    with pytest.raises(OSError):
        registry.register_from_file(tmp_path / "missing.txt")


def test_events_are_delivered_before_register_returns(registry):
    seen = []
    registry.subscribe(lambda event: seen.append((event.kind, event.component_id, registry.contains(event.component_id))))

    registry.register(make_component())
    assert seen == [(RegistryEventKind.REGISTERED, "node1-ingest", True)]

    registry.unregister("node1-ingest")
    assert seen[-1] == (RegistryEventKind.UNREGISTERED, "node1-ingest", False)


def test_load_emits_no_events(registry):
    seen = []
    registry.subscribe(seen.append)

    assert registry.load([make_component(), MonitoredComponent(name="", node="node1")]) == 1
    assert seen == []
    assert registry.contains("node1-ingest")


def test_failing_listener_does_not_block_others(registry):
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    registry.subscribe(broken)
    registry.subscribe(seen.append)

    assert registry.register(make_component())
    assert len(seen) == 1


def test_invalid_component_is_refused(registry):
    assert not registry.register(MonitoredComponent(name="ingest", node=""))
    assert not registry.register(None)
    assert registry.count() == 0


def test_unregister_unknown_returns_false(registry):
    assert registry.unregister("node9-ghost") is False


def test_get_returns_a_copy(registry):
    registry.register(make_component())
    copy = registry.get("node1-ingest")
    copy.on_alert = True

    assert registry.is_on_alert("node1-ingest") is False


def test_unknown_ids_raise(registry):
    with pytest.raises(UnknownComponentError) as excinfo:
        registry.mark_alert("node9-ghost")
    assert "node9-ghost" in str(excinfo.value)

    with pytest.raises(KeyError):
        registry.get("node9-ghost")


def test_alert_lifecycle_fields(registry, clock):
    registry.register(make_component())
    registry.mark_alert("node1-ingest")
    started = clock.now

    clock.advance(3600)
    registry.record_reminder("node1-ingest")
    component = registry.get("node1-ingest")
    assert component.alert_count == 1
    assert component.alert_started_time == started
    assert component.last_alert_time == clock.now
    assert registry.alert_time_of("node1-ingest") == clock.now

    registry.clear_alert("node1-ingest")
    assert not registry.is_on_alert("node1-ingest")
    assert registry.get("node1-ingest").live


def test_reregister_keeps_alert_and_restart_state(registry, clock):
    registry.register(make_component())
    registry.mark_alert("node1-ingest")
    registry.begin_remediation("node1-ingest")
    alerted_at = clock.now

    clock.advance(30)
    assert registry.register(make_component(topic="components.ingest.v2", metadata="rev 2"))

    component = registry.get("node1-ingest")
    assert component.topic == "components.ingest.v2"
    assert component.metadata == "rev 2"
    assert component.on_alert
    assert component.alert_count == 1
    assert component.alert_started_time == alerted_at
    assert component.remediation_in_progress
    assert component.last_restart_time == alerted_at
    assert registry.count() == 1


def test_remediation_flags(registry, clock):
    registry.register(make_component())
    registry.begin_remediation("node1-ingest")

    component = registry.get("node1-ingest")
    assert component.remediation_in_progress
    assert not component.live
    assert component.last_restart_time == clock.now

    registry.end_remediation("node1-ingest")
    assert registry.get("node1-ingest").live
    registry.unregister("node1-ingest")
    registry.end_remediation("node1-ingest")


def test_find_ids_by_name(registry):
    registry.register(make_component("ingest", "node1"))
    registry.register(make_component("ingest", "node2"))
    registry.register(make_component("relay", "node2"))

    assert sorted(registry.find_ids_by_name("ingest")) == ["node1-ingest", "node2-ingest"]


def test_lifecycle_name_falls_back_to_name():
    assert make_component().lifecycle_name == "ingest"
    assert make_component(app_manager_name="ingestd").lifecycle_name == "ingestd"


@pytest.mark.parametrize("wire, expected", [
    ("consumer", Category.CONSUMER),
    ("Camel_Producer", Category.PRODUCER),
    ("Camel", Category.GENERIC),
    ("nonsense", Category.UNKNOWN),
    (None, Category.UNKNOWN),
])
def test_category_from_wire(wire, expected):
    assert Category.from_wire(wire) is expected


def test_registry_default_clock():
    registry = ComponentRegistry()
    registry.register(make_component())
    registry.mark_alert("node1-ingest")
    assert registry.alert_time_of("node1-ingest") > 0
