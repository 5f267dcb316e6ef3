class NotificationSink:
    """Something that can deliver an operator notification."""

    name = "sink"

    def notify(self, recipient_group: str, subject: str, body: str, force_immediate: bool = False) -> None:
        """
        Delivers one notification.

        :param recipient_group: Logical group of recipients, e.g. 'operators'.
        :param subject: Short subject line.
        :param body: The full message text.
        :param force_immediate: Set for one-off events that bypass rate limiting.
        """
        raise NotImplementedError
