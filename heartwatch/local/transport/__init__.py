from .base import InboundMessage, Transport, TransportError
from .memory import InMemoryTransport
from .redis_transport import RedisTransport


def create_transport(config) -> Transport:
    """Builds the transport selected by `TRANSPORT_BACKEND`."""
    backend = config.TRANSPORT_BACKEND
    if backend == "redis":
        return RedisTransport(config.REDIS_URL, config.TRANSPORT_POLL_INTERVAL)
    if backend == "memory":
        return InMemoryTransport()
    raise ValueError(f"Unknown transport backend '{backend}'")


__all__ = ["InboundMessage", "Transport", "TransportError", "InMemoryTransport", "RedisTransport", "create_transport"]
