from typing import Callable, Iterable, NamedTuple, Optional


class TransportError(Exception):
    """Raised when a message cannot be published or a topic subscribed."""


class InboundMessage(NamedTuple):
    """A payload received on a subscribed topic."""
    topic: str
    payload: str
    sender: Optional[str] = None


InboundHandler = Callable[[InboundMessage], None]


class Transport:
    """
    Publish/subscribe transport interface.

    Implementations deliver every payload received on a subscribed topic to
    the handler given at subscription time. Handlers may be called from a
    transport-owned thread.
    """

    def publish(self, topic: str, text: str) -> None:
        """
        :raises TransportError: If the message could not be handed to the transport.
        """
        raise NotImplementedError

    def subscribe(self, topics: Iterable[str], handler: InboundHandler) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass
