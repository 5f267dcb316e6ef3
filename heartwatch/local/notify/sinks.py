import asyncio
import logging
from email.message import EmailMessage
from typing import Dict, List, Optional

import aiosmtplib
import requests

from heartwatch.local.notify.base import NotificationSink

log = logging.getLogger(__name__)


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the application log. Always configured."""

    name = "log"

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._log = logger or logging.getLogger("heartwatch.alerts")

    def notify(self, recipient_group: str, subject: str, body: str, force_immediate: bool = False) -> None:
        self._log.warning(f"[{recipient_group}] {subject}\n{body}")


class EmailNotificationSink(NotificationSink):
    """Sends notifications as plain-text email over SMTP."""

    name = "email"

    def __init__(self, hostname: str, port: int, sender: str, recipients: Dict[str, List[str]],
                 username: str = "", password: str = "", start_tls: bool = True, timeout: float = 30) -> None:
        self.hostname = hostname
        self.port = port
        self.sender = sender
        self.recipients = recipients
        self.username = username
        self.password = password
        self.start_tls = start_tls
        self.timeout = timeout

    def recipients_for(self, recipient_group: str) -> List[str]:
        """Addresses of a group; unknown groups receive the union of every group."""
        if recipient_group in self.recipients:
            return list(self.recipients[recipient_group])
        return sorted({address for group in self.recipients.values() for address in group})

    def build_message(self, recipient_group: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients_for(recipient_group))
        message["Subject"] = subject
        message.set_content(body)
        return message

    def notify(self, recipient_group: str, subject: str, body: str, force_immediate: bool = False) -> None:
        recipients = self.recipients_for(recipient_group)
        if not recipients:
            log.warning(f"No email recipients configured for group '{recipient_group}', not sending '{subject}'")
            return

        message = self.build_message(recipient_group, subject, body)
        asyncio.run(aiosmtplib.send(
            message,
            hostname=self.hostname,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=self.start_tls,
            timeout=self.timeout,
        ))
        log.info(f"Email '{subject}' sent to {', '.join(recipients)}")


class WebhookNotificationSink(NotificationSink):
    """POSTs notifications as JSON to an HTTP endpoint."""

    name = "webhook"

    def __init__(self, url: str, timeout: float = 5, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def notify(self, recipient_group: str, subject: str, body: str, force_immediate: bool = False) -> None:
        payload = {
            "group": recipient_group,
            "subject": subject,
            "body": body,
            "force": force_immediate,
        }
        response = self.session.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        log.debug(f"Webhook accepted '{subject}' with status {response.status_code}")
