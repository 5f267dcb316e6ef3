import subprocess
from typing import List, Tuple

import pytest

from heartwatch.heartbeat import HeartbeatManager, HeartbeatSettings
from heartwatch.local.notify import AlertDispatcher, NotificationSink
from heartwatch.local.transport import InMemoryTransport
from heartwatch.registry import ComponentRegistry, MonitoredComponent

START = 1_700_000_000.0
SUPERVISOR_TOPIC = "heartwatch"


class FakeClock:
    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class RecordingSink(NotificationSink):
    name = "recording"

    def __init__(self) -> None:
        self.notifications: List[Tuple[str, str, str, bool]] = []

    def notify(self, recipient_group, subject, body, force_immediate=False):
        self.notifications.append((recipient_group, subject, body, force_immediate))

    @property
    def bodies(self) -> List[str]:
        return [n[2] for n in self.notifications]


class FakeRunner:
    """Stands in for subprocess.run and replays canned lifecycle-tool output."""

    def __init__(self, outputs=None, returncode: int = 0) -> None:
        self.outputs = outputs or {}
        self.returncode = returncode
        self.calls: List[List[str]] = []

    @property
    def verbs(self) -> List[str]:
        return [args[2] for args in self.calls]

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        stdout = self.outputs.get(args[2], "")
        return subprocess.CompletedProcess(args, self.returncode, stdout=stdout, stderr="")


def make_component(name: str = "ingest", node: str = "node1", topic: str = "components.ingest", **kwargs):
    return MonitoredComponent(name=name, node=node, topic=topic, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def registry(clock):
    return ComponentRegistry(clock=clock)


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def dispatcher(sink, clock):
    return AlertDispatcher([sink], recipient_group="operators", rate_limit_seconds=120, clock=clock)


@pytest.fixture
def settings():
    return HeartbeatSettings(name="heartwatch", node="supervisor-host", discovery_grace_period=0)


@pytest.fixture
def manager(registry, transport, dispatcher, settings, clock):
    manager = HeartbeatManager(registry, transport, dispatcher, app_manager=None, settings=settings, clock=clock)
    transport.subscribe([SUPERVISOR_TOPIC], manager.on_transport_message)
    yield manager
    manager.stop(timeout=1)
