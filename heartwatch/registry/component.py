import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional

from heartwatch.messages import RegisterMessage, parse

log = logging.getLogger(__name__)

NEVER_ALERTED = -1
NEVER_RESTARTED = 0

# Set by registration; everything else on a component is runtime state.
DESCRIPTIVE_FIELDS = ("topic", "path", "metadata", "category", "app_manager_name", "jmx_enabled", "is_managed_app")


class Category(Enum):
    """Descriptive tag for the kind of work a component does."""
    GENERIC = "Generic"
    CONSUMER = "Consumer"              # consumes a remote feed
    CONSUMER_ARCHIVER = "Consumer_Archiver"  # consumes and writes to a database
    PRODUCER = "Producer"              # gathers data locally and publishes it
    BRIDGE = "Bridge"                  # relays from one location to another
    STANDALONE = "Standalone"          # managed only by its process
    UNKNOWN = "Unknown"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "Category":
        """Case-insensitive lookup; also accepts the older 'Camel_*' names."""
        if not value:
            return cls.UNKNOWN
        normalized = value.strip().lower()
        if normalized == "camel":
            return cls.GENERIC
        if normalized.startswith("camel_"):
            normalized = normalized[len("camel_"):]
        for member in cls:
            if member.value.lower() == normalized:
                return member
        log.warning(f"Unknown category '{value}', using {cls.UNKNOWN.value}")
        return cls.UNKNOWN


def make_component_id(node: str, name: str) -> str:
    return f"{node}-{name}"


@dataclass
class MonitoredComponent:
    """One monitored process and its alert state."""
    name: str
    node: str
    topic: Optional[str] = None
    path: Optional[str] = None
    metadata: Optional[str] = None
    category: Category = Category.UNKNOWN
    app_manager_name: Optional[str] = None
    jmx_enabled: bool = False
    is_managed_app: bool = False

    live: bool = True
    on_alert: bool = False
    last_alert_time: float = NEVER_ALERTED
    alert_started_time: float = NEVER_ALERTED
    alert_count: int = 0
    last_restart_time: float = NEVER_RESTARTED
    remediation_in_progress: bool = field(default=False, compare=False)

    @property
    def id(self) -> str:
        return make_component_id(self.node, self.name)

    @property
    def lifecycle_name(self) -> str:
        """The name the lifecycle tool knows this component by."""
        return self.app_manager_name or self.name

    def is_valid(self) -> bool:
        return bool(self.name) and bool(self.node)

    def update_description(self, other: "MonitoredComponent") -> None:
        """Copies the descriptive fields of `other`, leaving alert and restart state untouched."""
        for name in DESCRIPTIVE_FIELDS:
            setattr(self, name, getattr(other, name))

    @classmethod
    def from_register_message(cls, message: RegisterMessage) -> "MonitoredComponent":
        return cls(
            name=message.name,
            node=message.node,
            topic=message.topic,
            path=message.path,
            metadata=message.metadata,
            category=Category.from_wire(message.category),
            app_manager_name=message.app_manager_name,
            jmx_enabled=message.jmx_enabled,
            is_managed_app=message.is_managed_app,
        )

    @classmethod
    def from_record(cls, line: str) -> Optional["MonitoredComponent"]:
        """
        Builds a component from one registration-file record.

        A record is either a JSON register message or a comma-separated
        `name,node,topic[,category[,path]]` line.

        :param line: A single non-blank, non-comment line.
        :return: The component, or None if the record is unusable.
        """
        line = line.strip()
        if line.startswith("{"):
            message = parse(line)
            if not isinstance(message, RegisterMessage):
                log.warning(f"Registration record is not a register message: {line[:80]!r}")
                return None
            component = cls.from_register_message(message)
        else:
            fields = [f.strip() for f in line.split(",")]
            if len(fields) < 3:
                log.warning(f"Registration record needs at least name, node and topic: {line!r}")
                return None
            component = cls(name=fields[0], node=fields[1], topic=fields[2] or None)
            if len(fields) > 3:
                component.category = Category.from_wire(fields[3])
            if len(fields) > 4:
                component.path = fields[4] or None

        if not component.is_valid() or not component.topic:
            log.warning(f"Registration record is missing name, node or topic: {line[:80]!r}")
            return None
        return component
