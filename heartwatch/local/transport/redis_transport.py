import redis
import logging
import threading
from typing import Iterable, Optional

from heartwatch.local.transport.base import InboundHandler, InboundMessage, Transport, TransportError

log = logging.getLogger(__name__)


class RedisTransport(Transport):
    """
    Transport over Redis pub/sub.

    Inbound messages are read by a daemon polling thread and passed to the
    subscribed handler on that thread.
    """

    def __init__(self, url: str, poll_interval: float = 1.0, client: Optional[redis.Redis] = None) -> None:
        self.url = url
        self.poll_interval = poll_interval
        self._client = client or redis.Redis.from_url(url, decode_responses=True)
        self._pubsub = None
        self._handler: Optional[InboundHandler] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def publish(self, topic: str, text: str) -> None:
        try:
            self._client.publish(topic, text)
        except redis.RedisError as e:
            raise TransportError(f"Failed to publish to '{topic}': {e}") from e

    def subscribe(self, topics: Iterable[str], handler: InboundHandler) -> None:
        topics = list(topics)
        try:
            if self._pubsub is None:
                self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(*topics)
        except redis.RedisError as e:
            raise TransportError(f"Failed to subscribe to {topics}: {e}") from e

        self._handler = handler
        log.info(f"Subscribed to Redis channels: {', '.join(topics)}")
        if self._thread is None or not self._thread.is_alive():
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._poll_loop, daemon=True, name="RedisTransportPollThread")
            self._thread.start()

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                message = self._pubsub.get_message(timeout=self.poll_interval)
            except redis.RedisError as e:
                log.error(f"Error reading from Redis: {e}")
                self._stop_event.wait(self.poll_interval)
                continue
            if not message or message.get("type") != "message":
                continue
            try:
                self._handler(InboundMessage(message["channel"], message["data"]))
            except Exception as e:
                log.error(f"Inbound handler failed for channel '{message['channel']}': {e}", exc_info=True)
        log.info("Redis transport polling thread has stopped.")

    def close(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.poll_interval * 2)
        try:
            if self._pubsub is not None:
                self._pubsub.close()
            self._client.close()
        except redis.RedisError as e:
            log.warning(f"Error closing Redis connection: {e}")
