"""Telegram bot notification adapter."""

import html

import httpx

from release_watch.adapters.http_errors import raise_for_transient
from release_watch.adapters.notifications.formatting import (
    CATEGORY_LABEL,
    body_preview,
    category_of,
)
from release_watch.core import Channel, ChatChannel, NotificationPayload, Notifier
from release_watch.core.exceptions import ConfigurationError, DeliveryError

MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier(Notifier):
    """Send release notifications through the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 30.0,
    ) -> None:
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    async def send(self, channel: Channel, payload: NotificationPayload) -> None:
        """Send the notification to a chat.

        Raises:
            ConfigurationError: If no bot token is configured
            TransientError: On rate limits or Telegram server errors
            DeliveryError: If Telegram rejects the message
        """
        if not isinstance(channel, ChatChannel):
            raise ConfigurationError(f"TelegramNotifier cannot send to {type(channel).__name__}")
        if not self.bot_token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN is not set")

        message = self.format_message(payload)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.api_base}/bot{self.bot_token}/sendMessage",
                json={
                    "chat_id": channel.chat_id,
                    "text": message,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": False,
                },
            )

        if response.is_success:
            return

        raise_for_transient(response, "Telegram API")
        raise DeliveryError(
            f"Telegram API error {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )

    def format_message(self, payload: NotificationPayload) -> str:
        """Render the payload as Telegram HTML.

        The message is assembled from markup and plain text parts. Only the
        plain text is cut to fit, so tags and entities always stay whole.
        """
        analysis = payload.analysis
        parts: list[tuple[bool, str]] = [
            (False, "<b>"),
            (True, CATEGORY_LABEL[category_of(payload)]),
            (False, ": "),
            (True, payload.repository),
            (False, "</b>\n\n<b>"),
            (True, payload.title),
            (False, "</b>"),
        ]

        if analysis and analysis.has_breaking_changes:
            parts.append((False, "\n⚠️ <b>Contains breaking changes</b>"))

        if analysis:
            parts += [(False, "\n"), (True, analysis.summary)]
            if analysis.highlights:
                parts.append((False, "\n"))
                for highlight in analysis.highlights:
                    parts += [(False, "\n• "), (True, highlight)]
        else:
            parts += [(False, "\n"), (True, body_preview(payload.body))]

        parts.append((False, f'\n<a href="{html.escape(payload.url, quote=True)}">View Release</a>'))

        budget = MAX_MESSAGE_LENGTH - sum(len(value) for is_text, value in parts if not is_text)
        rendered = []
        for is_text, value in parts:
            if not is_text:
                rendered.append(value)
                continue
            escaped = _escape_within(value, max(budget, 0))
            budget -= len(escaped)
            rendered.append(escaped)

        return "".join(rendered)


def _escape_within(text: str, limit: int, suffix: str = "...") -> str:
    """HTML-escape ``text``, cutting the raw text so the result fits ``limit``."""
    escaped = html.escape(text)
    if len(escaped) <= limit:
        return escaped
    if limit < len(suffix):
        return ""

    pieces: list[str] = []
    used = len(suffix)
    for char in text:
        piece = html.escape(char)
        if used + len(piece) > limit:
            break
        pieces.append(piece)
        used += len(piece)
    return "".join(pieces) + suffix
