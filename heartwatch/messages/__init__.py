"""
The wire message protocol.

Typed messages exchanged between the supervisor and monitored components,
plus the parser that converts them to and from their JSON envelope.
"""

from .models import (
    AlertMessage, AlertType, HeartbeatMessage, HeartbeatType, Message, MessageKind,
    RegisterMessage, UnregisterMessage, PROTOCOL_VERSION,
)
from .parser import parse, serialize, is_envelope

__all__ = [
    "AlertMessage", "AlertType", "HeartbeatMessage", "HeartbeatType", "Message",
    "MessageKind", "RegisterMessage", "UnregisterMessage", "PROTOCOL_VERSION",
    "parse", "serialize", "is_envelope",
]
