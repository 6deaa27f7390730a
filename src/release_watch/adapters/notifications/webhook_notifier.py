"""Incoming webhook notification adapter (Discord and Slack)."""

import re

import httpx

from release_watch.adapters.http_errors import raise_for_transient
from release_watch.adapters.notifications.formatting import (
    CATEGORY_LABEL,
    body_preview,
    category_of,
    truncate,
)
from release_watch.core import (
    Channel,
    NotificationPayload,
    Notifier,
    ReleaseCategory,
    WebhookChannel,
    WebhookFlavor,
)
from release_watch.core.exceptions import ConfigurationError, DeliveryError

MAX_EMBED_DESCRIPTION = 4096
MAX_SLACK_TEXT = 3000

CATEGORY_COLOR = {
    ReleaseCategory.MAJOR: 0x5865F2,
    ReleaseCategory.MINOR: 0x57F287,
    ReleaseCategory.PATCH: 0xFEE75C,
    ReleaseCategory.SECURITY: 0xED4245,
    ReleaseCategory.BREAKING: 0xEB459E,
    ReleaseCategory.UNKNOWN: 0x99AAB5,
}


class WebhookNotifier(Notifier):
    """Post release notifications to an incoming webhook."""

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout

    async def send(self, channel: Channel, payload: NotificationPayload) -> None:
        """Post the notification in the shape the webhook's flavor expects.

        Raises:
            ConfigurationError: If the channel is not a webhook or has no URL
            TransientError: On rate limits or server errors
            DeliveryError: If the endpoint rejects the message
        """
        if not isinstance(channel, WebhookChannel):
            raise ConfigurationError(f"WebhookNotifier cannot send to {type(channel).__name__}")
        if not channel.url:
            raise ConfigurationError("Webhook channel has no URL")

        if channel.flavor == WebhookFlavor.SLACK:
            body = self.format_slack(payload)
        else:
            body = {"embeds": [self.format_discord_embed(payload)]}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(channel.url, json=body)

        if response.is_success:
            return

        raise_for_transient(response, "Webhook")
        raise DeliveryError(
            f"Webhook error {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )

    def format_discord_embed(self, payload: NotificationPayload) -> dict:
        """Build a Discord embed for the release."""
        analysis = payload.analysis
        category = category_of(payload)

        description_parts: list[str] = []
        if analysis and analysis.has_breaking_changes:
            description_parts.append("⚠️ **Contains Breaking Changes**\n")
        if analysis:
            description_parts.append(f"**Summary:** {analysis.summary}")
        else:
            description_parts.append(body_preview(payload.body))

        embed: dict = {
            "title": f"{CATEGORY_LABEL[category]}: {payload.repository}",
            "description": truncate("\n".join(description_parts), MAX_EMBED_DESCRIPTION),
            "url": payload.url,
            "color": CATEGORY_COLOR[category],
            "footer": {"text": f"Version: {payload.title}"},
            "timestamp": payload.published_at,
        }

        if analysis and analysis.highlights:
            embed["fields"] = [
                {
                    "name": "Highlights",
                    "value": "\n".join(f"• {h}" for h in analysis.highlights),
                }
            ]

        if payload.author:
            embed["author"] = {"name": payload.author}

        return embed

    def format_slack(self, payload: NotificationPayload) -> dict:
        """Build a Slack message for the release."""
        analysis = payload.analysis
        category = category_of(payload)

        lines = [f"*{CATEGORY_LABEL[category]}: {payload.repository}* - {payload.title}"]
        if analysis and analysis.has_breaking_changes:
            lines.append("⚠️ *Contains Breaking Changes*")
        if analysis:
            lines.append(analysis.summary)
            lines.extend(f"• {h}" for h in analysis.highlights)
        else:
            lines.append(body_preview(payload.body))
        lines.append(f"<{payload.url}|View Release>")

        text = self._convert_markdown_to_mrkdwn("\n".join(lines))
        return {
            "text": truncate(text, MAX_SLACK_TEXT),
            "mrkdwn": True,
        }

    def _convert_markdown_to_mrkdwn(self, text: str) -> str:
        """Convert markdown to Slack mrkdwn format.

        Args:
            text: Markdown text

        Returns:
            Text in Slack mrkdwn format
        """
        # Convert markdown links [text](url) to Slack format <url|text>
        text = re.sub(r'\[([^\]]+)\]\(([^)]+)\)', r'<\2|\1>', text)

        # Convert markdown bold **text** to Slack bold *text*
        text = re.sub(r'\*\*([^*]+)\*\*', r'*\1*', text)

        return text
