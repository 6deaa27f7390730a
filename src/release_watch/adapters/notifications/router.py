"""Dispatch a notification to the notifier for a channel's type."""

from typing import Optional

from release_watch.core import (
    Channel,
    ChatChannel,
    NotificationPayload,
    Notifier,
    WebhookChannel,
)
from release_watch.core.exceptions import ConfigurationError


class NotificationRouter(Notifier):
    """Route each channel variant to its own client."""

    def __init__(
        self,
        chat: Optional[Notifier] = None,
        webhook: Optional[Notifier] = None,
    ) -> None:
        self.chat = chat
        self.webhook = webhook

    async def send(self, channel: Channel, payload: NotificationPayload) -> None:
        if isinstance(channel, ChatChannel):
            notifier = self.chat
        elif isinstance(channel, WebhookChannel):
            notifier = self.webhook
        else:
            raise ConfigurationError(f"Unknown channel type: {type(channel).__name__}")

        if notifier is None:
            raise ConfigurationError(f"No notifier configured for {channel.key}")

        await notifier.send(channel, payload)
