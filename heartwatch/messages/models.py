import time
from enum import Enum
from dataclasses import dataclass
from typing import Optional

PROTOCOL_VERSION = "0.0.1"


class MessageKind(Enum):
    """Top-level message kinds understood on the wire."""
    REGISTER = "REGISTER"
    UNREGISTER = "UNREGISTER"
    HEARTBEAT = "HEARTBEAT"
    ALERT = "ALERT"
    # Reserved: recognized but not acted upon.
    STATUS = "STATUS"
    CONTROL = "CONTROL"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> Optional["MessageKind"]:
        """Case-insensitive lookup; returns None for unknown kinds."""
        if not isinstance(value, str):
            return None
        try:
            return cls[value.strip().upper()]
        except KeyError:
            return None


class HeartbeatType(Enum):
    REQUEST = "request"
    RESPONSE = "response"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> Optional["HeartbeatType"]:
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class AlertType(Enum):
    NO_DATA_THRESHOLD_EXCEEDED = "NO_DATA_THRESHOLD_EXCEEDED"
    NO_HEARTBEAT_EXCEEDED = "NO_HEARTBEAT_EXCEEDED"
    UNDEFINED = "UNDEFINED"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "AlertType":
        if not isinstance(value, str):
            return cls.UNDEFINED
        value = value.strip().upper()
        if value == "NO_MACH_HEARTBEAT_EXCEEDED":  # name used by older agents
            return cls.NO_HEARTBEAT_EXCEEDED
        try:
            return cls(value)
        except ValueError:
            return cls.UNDEFINED


def timestamp_now() -> str:
    """Wire timestamps are epoch milliseconds rendered as a string."""
    return str(int(time.time() * 1000))


@dataclass
class Message:
    """
    Common envelope shared by every message kind.

    A plain `Message` is used for the reserved STATUS and CONTROL kinds,
    which carry no body the supervisor understands.
    """
    name: Optional[str]
    node: Optional[str]
    timestamp: Optional[str] = None
    protocol_version: str = PROTOCOL_VERSION
    kind: MessageKind = MessageKind.STATUS

    @property
    def component_id(self) -> Optional[str]:
        """The compound id of the sender, when both parts are known."""
        if self.name and self.node:
            return f"{self.node}-{self.name}"
        return None


@dataclass
class RegisterMessage(Message):
    topic: Optional[str] = None
    path: Optional[str] = None
    category: Optional[str] = None
    metadata: Optional[str] = None
    app_manager_name: Optional[str] = None
    jmx_enabled: bool = False
    is_managed_app: bool = False
    kind: MessageKind = MessageKind.REGISTER


@dataclass
class UnregisterMessage(Message):
    reason: Optional[str] = None
    kind: MessageKind = MessageKind.UNREGISTER


@dataclass
class HeartbeatMessage(Message):
    subtype: Optional[HeartbeatType] = HeartbeatType.REQUEST
    freeform_message: Optional[str] = None
    target_component_id: Optional[str] = None
    kind: MessageKind = MessageKind.HEARTBEAT

    @property
    def is_request(self) -> bool:
        return self.subtype is HeartbeatType.REQUEST

    @property
    def is_response(self) -> bool:
        return self.subtype is HeartbeatType.RESPONSE


@dataclass
class AlertMessage(Message):
    message_body: str = ""
    alert_type: AlertType = AlertType.UNDEFINED
    kind: MessageKind = MessageKind.ALERT
