import logging
import threading
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from heartwatch.local.transport.base import InboundHandler, InboundMessage, Transport, TransportError

log = logging.getLogger(__name__)


class InMemoryTransport(Transport):
    """
    In-process transport. Delivery is synchronous on the publishing thread.

    Every published message is also kept in `published` so callers can
    inspect what went out.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[InboundHandler]] = defaultdict(list)
        self._lock = threading.Lock()
        self._closed = False
        self.published: List[Tuple[str, str]] = []

    def publish(self, topic: str, text: str, sender: Optional[str] = None) -> None:
        if self._closed:
            raise TransportError("Transport is closed")
        with self._lock:
            self.published.append((topic, text))
            handlers = list(self._handlers.get(topic, []))
        for handler in handlers:
            handler(InboundMessage(topic, text, sender))

    def subscribe(self, topics: Iterable[str], handler: InboundHandler) -> None:
        with self._lock:
            for topic in topics:
                self._handlers[topic].append(handler)
                log.debug(f"Subscribed handler to topic '{topic}'")

    def messages_on(self, topic: str) -> List[str]:
        with self._lock:
            return [text for t, text in self.published if t == topic]

    def close(self) -> None:
        self._closed = True
        with self._lock:
            self._handlers.clear()
