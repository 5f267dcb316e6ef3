import time
import logging
import threading
from urllib.parse import urlsplit
from typing import Callable, Dict, List, Optional

from heartwatch.local.notify.base import NotificationSink

log = logging.getLogger(__name__)

SIGNATURE = "- Heartwatch (Heartbeat Manager)"


def base_address(address: str) -> str:
    """
    Returns the hostname portion of an address.

    Protocol, port, path and query string are stripped, so
    'http://node1.example.com:8080/app?x=1' becomes 'node1.example.com'.
    """
    if not address:
        return ""
    address = address.strip()
    if "://" not in address:
        address = "//" + address
    host = urlsplit(address).hostname
    return host or address.lstrip("/")


def subject_for(node: str, name: Optional[str] = None) -> str:
    host = base_address(node)
    return f"Heartwatch alert: {name}@{host}" if name else f"Heartwatch alert: {host}"


class AlertDispatcher:
    """
    Formats operator notifications and fans them out to every sink.

    Notifications that are not forced are rate limited per subject: a second
    notification with the same subject inside `rate_limit_seconds` is
    dropped. A sink that fails is logged and does not block the others.
    """

    def __init__(self, sinks: List[NotificationSink], recipient_group: str = "operators",
                 rate_limit_seconds: float = 120, clock: Callable[[], float] = time.time) -> None:
        self.sinks = list(sinks)
        self.recipient_group = recipient_group
        self.rate_limit_seconds = rate_limit_seconds
        self._clock = clock
        self._last_sent: Dict[str, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def format_component_body(component_id: str, info: str) -> str:
        return f"Alert for component: '{component_id}'\n\n{info}\n\n\n{SIGNATURE}"

    def send_component_alert(self, component_id: str, info: str, force: bool = False,
                             node: Optional[str] = None, name: Optional[str] = None) -> bool:
        """
        Sends a notification about one component.

        :param component_id: The compound id of the component.
        :param info: Details of the event.
        :param force: Bypasses the per-subject rate limit.
        :param node: The component's node, used to derive the subject.
        :param name: The component's name, used to derive the subject.
        :return: True if the notification was handed to the sinks.
        """
        subject = subject_for(node, name) if node else subject_for(component_id)
        return self.notify(subject, self.format_component_body(component_id, info), force)

    def notify(self, subject: str, body: str, force: bool = False) -> bool:
        now = self._clock()
        with self._lock:
            last = self._last_sent.get(subject)
            if not force and last is not None and now - last < self.rate_limit_seconds:
                log.debug(f"Rate limited notification '{subject}' ({now - last:.0f}s since last)")
                return False
            self._last_sent[subject] = now

        for sink in self.sinks:
            try:
                sink.notify(self.recipient_group, subject, body, force)
            except Exception as e:
                log.error(f"Notification sink '{sink.name}' failed for '{subject}': {e}", exc_info=True)
        return True
