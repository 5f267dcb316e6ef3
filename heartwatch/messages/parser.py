import json
import logging
from typing import Any, Dict, Optional

from heartwatch.messages.models import (
    AlertMessage, AlertType, HeartbeatMessage, HeartbeatType, Message, MessageKind,
    RegisterMessage, UnregisterMessage, timestamp_now, PROTOCOL_VERSION,
)

log = logging.getLogger(__name__)

DEFAULT_SENTINEL = "HEARTBEAT"

#* --- Wire field names ---
ENVELOPE = "mach"
TYPE = "type"
NAME = "name"
NODE = "node"
TIME = "time"
VERSION = "version"
BODY = "body"
TOPIC = "topic"
PATH = "path"
CATEGORY = "category"
METADATA = "metadata"
APP_MGR_NAME = "appMgrName"
IS_JMX_ENABLED = "isJMXenabled"
IS_MANAGED_APP = "isManagedApp"
LEGACY_IS_MANAGED_APP = "isCamelApp"
REASON = "reason"
HB_TYPE = "type"
MESSAGE = "message"
COMPONENT_ID = "componentId"
ALERT_TYPE = "alertType"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def _opt_str(body: Dict[str, Any], key: str) -> Optional[str]:
    value = body.get(key)
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _load_envelope(text: str) -> Optional[Dict[str, Any]]:
    """Returns the inner envelope dict, or None if `text` is not one."""
    try:
        document = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(document, dict):
        return None
    envelope = document.get(ENVELOPE)
    return envelope if isinstance(envelope, dict) else None


def is_envelope(text: str) -> bool:
    """True if `text` is a structured message with a recognized kind."""
    envelope = _load_envelope(text)
    return envelope is not None and MessageKind.from_wire(envelope.get(TYPE)) is not None


def parse(text: str, sentinel: str = DEFAULT_SENTINEL) -> Optional[Message]:
    """
    Parses wire text into a typed message.

    Structured envelopes are tried first. Only when the text is not an
    envelope is it compared with the legacy plain-text sentinel, which maps
    to a heartbeat request without sender information.

    :param text: The raw payload received from the transport.
    :param sentinel: The legacy plain-text heartbeat string.
    :return: The parsed message, or None if the payload is not understood.
    """
    if not isinstance(text, str):
        log.debug(f"Ignoring non-text payload of type {type(text).__name__}")
        return None

    envelope = _load_envelope(text)
    if envelope is None:
        if sentinel and text.strip() == sentinel:
            return HeartbeatMessage(name=None, node=None, subtype=HeartbeatType.REQUEST, freeform_message=sentinel)
        log.debug(f"Payload is not a structured message: {text[:80]!r}")
        return None

    kind = MessageKind.from_wire(envelope.get(TYPE))
    if kind is None:
        log.info(f"Rejected message with missing or unknown type: {envelope.get(TYPE)!r}")
        return None

    body = envelope.get(BODY) or {}
    if not isinstance(body, dict):
        log.info(f"Rejected {kind.value} message with a malformed body")
        return None

    envelope_fields = dict(
        name=_opt_str(envelope, NAME),
        node=_opt_str(envelope, NODE),
        timestamp=_opt_str(envelope, TIME),
        protocol_version=_opt_str(envelope, VERSION) or PROTOCOL_VERSION,
    )

    if kind is MessageKind.REGISTER:
        managed = body.get(IS_MANAGED_APP, body.get(LEGACY_IS_MANAGED_APP, False))
        return RegisterMessage(
            **envelope_fields,
            topic=_opt_str(body, TOPIC),
            path=_opt_str(body, PATH),
            category=_opt_str(body, CATEGORY),
            metadata=_opt_str(body, METADATA),
            app_manager_name=_opt_str(body, APP_MGR_NAME),
            jmx_enabled=_as_bool(body.get(IS_JMX_ENABLED, False)),
            is_managed_app=_as_bool(managed),
        )
    if kind is MessageKind.UNREGISTER:
        return UnregisterMessage(**envelope_fields, reason=_opt_str(body, REASON))
    if kind is MessageKind.HEARTBEAT:
        return HeartbeatMessage(
            **envelope_fields,
            subtype=HeartbeatType.from_wire(body.get(HB_TYPE)),
            freeform_message=_opt_str(body, MESSAGE),
            target_component_id=_opt_str(body, COMPONENT_ID),
        )
    if kind is MessageKind.ALERT:
        return AlertMessage(
            **envelope_fields,
            message_body=_opt_str(body, MESSAGE) or "",
            alert_type=AlertType.from_wire(body.get(ALERT_TYPE)),
        )
    return Message(**envelope_fields, kind=kind)


def _body_of(message: Message) -> Dict[str, Any]:
    if isinstance(message, RegisterMessage):
        return {
            TOPIC: message.topic,
            PATH: message.path,
            CATEGORY: message.category,
            METADATA: message.metadata,
            APP_MGR_NAME: message.app_manager_name,
            IS_JMX_ENABLED: message.jmx_enabled,
            IS_MANAGED_APP: message.is_managed_app,
        }
    if isinstance(message, UnregisterMessage):
        return {REASON: message.reason}
    if isinstance(message, HeartbeatMessage):
        return {
            HB_TYPE: message.subtype.value if message.subtype else None,
            MESSAGE: message.freeform_message,
            COMPONENT_ID: message.target_component_id,
        }
    if isinstance(message, AlertMessage):
        return {MESSAGE: message.message_body, ALERT_TYPE: message.alert_type.value}
    return {}


def serialize(message: Message) -> str:
    """
    Serializes a message to its wire form.

    The timestamp and protocol version are always populated; unset body
    fields are written as null.
    """
    if message.timestamp is None:
        message.timestamp = timestamp_now()
    envelope = {
        TYPE: message.kind.value,
        NAME: message.name,
        NODE: message.node,
        TIME: message.timestamp,
        VERSION: message.protocol_version or PROTOCOL_VERSION,
        BODY: _body_of(message),
    }
    return json.dumps({ENVELOPE: envelope})
