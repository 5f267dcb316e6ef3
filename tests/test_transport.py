import threading
import time
from types import SimpleNamespace

import pytest
import redis

from heartwatch.local.transport import (
    InMemoryTransport, RedisTransport, TransportError, create_transport,
)


def test_memory_transport_delivers_to_subscribers():
    transport = InMemoryTransport()
    received = []
    transport.subscribe(["a", "b"], received.append)

    transport.publish("a", "one", sender="node1-ingest")
    transport.publish("c", "nobody listens")

    assert [(m.topic, m.payload, m.sender) for m in received] == [("a", "one", "node1-ingest")]
    assert transport.messages_on("c") == ["nobody listens"]


def test_memory_transport_refuses_publish_after_close():
    transport = InMemoryTransport()
    transport.close()

    with pytest.raises(TransportError):
        transport.publish("a", "late")


class FakePubSub:
    def __init__(self):
        self.channels = []
        self.queue = []
        self.closed = False

    def subscribe(self, *channels):
        self.channels.extend(channels)

    def get_message(self, timeout=None):
        if self.queue:
            return self.queue.pop(0)
        time.sleep(0.01)
        return None

    def close(self):
        self.closed = True


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []
        self.pubsub_instance = FakePubSub()
        self.closed = False

    def publish(self, channel, message):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        self.published.append((channel, message))

    def pubsub(self, ignore_subscribe_messages=False):
        return self.pubsub_instance

    def close(self):
        self.closed = True


def test_redis_transport_publishes():
    client = FakeRedis()
    RedisTransport("redis://unused", client=client).publish("heartwatch", "payload")
    assert client.published == [("heartwatch", "payload")]


def test_redis_errors_become_transport_errors():
    transport = RedisTransport("redis://unused", client=FakeRedis(fail=True))
    with pytest.raises(TransportError):
        transport.publish("heartwatch", "payload")


def test_redis_transport_polls_subscribed_channels():
    client = FakeRedis()
    transport = RedisTransport("redis://unused", poll_interval=0.01, client=client)
    received = threading.Event()
    messages = []

    def handler(message):
        messages.append(message)
        received.set()

    transport.subscribe(["heartwatch"], handler)
    client.pubsub_instance.queue.append({"type": "message", "channel": "heartwatch", "data": "HEARTBEAT"})

    assert received.wait(5)
    transport.close()
    assert client.pubsub_instance.channels == ["heartwatch"]
    assert messages[0].payload == "HEARTBEAT"
    assert messages[0].sender is None
    assert client.closed


def test_create_transport():
    assert isinstance(create_transport(SimpleNamespace(TRANSPORT_BACKEND="memory")), InMemoryTransport)
    with pytest.raises(ValueError):
        create_transport(SimpleNamespace(TRANSPORT_BACKEND="carrier-pigeon"))
