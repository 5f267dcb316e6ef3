from typing import List

from .base import NotificationSink
from .alerts import AlertDispatcher, base_address, subject_for
from .sinks import EmailNotificationSink, LoggingNotificationSink, WebhookNotificationSink


def create_dispatcher(config) -> AlertDispatcher:
    """Builds the alert dispatcher with every sink enabled in the config."""
    sinks: List[NotificationSink] = [LoggingNotificationSink()]
    if config.EMAIL_ENABLED:
        sinks.append(EmailNotificationSink(
            hostname=config.SMTP_HOST,
            port=config.SMTP_PORT,
            sender=config.EMAIL_FROM,
            recipients={config.ALERT_RECIPIENT_GROUP: config.EMAIL_TO},
            username=config.SMTP_USER,
            password=config.SMTP_PASSWORD,
            start_tls=config.SMTP_START_TLS,
        ))
    if config.WEBHOOK_URL:
        sinks.append(WebhookNotificationSink(config.WEBHOOK_URL, config.WEBHOOK_TIMEOUT))
    return AlertDispatcher(sinks, config.ALERT_RECIPIENT_GROUP, config.ALERT_RATE_LIMIT_SECONDS)


__all__ = [
    "NotificationSink", "AlertDispatcher", "base_address", "subject_for",
    "EmailNotificationSink", "LoggingNotificationSink", "WebhookNotificationSink", "create_dispatcher",
]
