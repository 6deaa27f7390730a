"""Subscription directory backed by a YAML file."""

from pathlib import Path
from typing import Optional

import structlog
import yaml

from release_watch.core import (
    Channel,
    ChatChannel,
    Subscription,
    SubscriptionDirectory,
    WebhookChannel,
    WebhookFlavor,
)

logger = structlog.get_logger(__name__)


class YamlSubscriptionDirectory(SubscriptionDirectory):
    """Read subscribers, tracked repositories and channels from YAML.

    The file is read once per instance, so one instance is a point-in-time
    snapshot for the whole run.

    Expected layout::

        subscribers:
          - id: "U1"
            repositories: ["acme/widget"]
            paused: []
            channels:
              - {type: chat, chat_id: "12345"}
              - {type: webhook, url: "https://...", flavor: discord}
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._snapshot: Optional[dict[str, Subscription]] = None

    def _load(self) -> dict[str, Subscription]:
        if self._snapshot is not None:
            return self._snapshot

        snapshot: dict[str, Subscription] = {}
        if not self.path.exists():
            logger.warning("subscriptions_file_missing", path=str(self.path))
            self._snapshot = snapshot
            return snapshot

        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        for row in data.get("subscribers") or []:
            subscriber_id = str(row.get("id", "")).strip()
            if not subscriber_id:
                logger.warning("subscriber_without_id_skipped", row=row)
                continue

            # Collapse duplicate repositories, keep first-seen order
            repositories = list(dict.fromkeys(str(r) for r in row.get("repositories") or []))

            subscription = snapshot.get(subscriber_id)
            if subscription is None:
                subscription = snapshot[subscriber_id] = Subscription(
                    subscriber_id=subscriber_id, repositories=[]
                )

            for repository in repositories:
                if repository not in subscription.repositories:
                    subscription.repositories.append(repository)
            subscription.paused.update(str(r) for r in row.get("paused") or [])
            subscription.channels.extend(
                channel for channel in map(_parse_channel, row.get("channels") or []) if channel
            )

        self._snapshot = snapshot
        return snapshot

    async def list_all_subscriptions(self) -> list[Subscription]:
        return list(self._load().values())

    async def is_paused(self, subscriber_id: str, repository: str) -> bool:
        subscription = self._load().get(subscriber_id)
        return bool(subscription and repository in subscription.paused)

    async def list_channels(self, subscriber_id: str) -> list[Channel]:
        subscription = self._load().get(subscriber_id)
        return list(subscription.channels) if subscription else []


def _parse_channel(data: dict) -> Optional[Channel]:
    """Create channel from a YAML mapping."""
    kind = data.get("type")
    enabled = bool(data.get("enabled", True))

    if kind in ("chat", "telegram") and data.get("chat_id"):
        return ChatChannel(chat_id=str(data["chat_id"]), enabled=enabled)

    if kind in ("webhook", "discord", "slack") and data.get("url"):
        flavor = data.get("flavor") or ("slack" if kind == "slack" else "discord")
        try:
            return WebhookChannel(url=str(data["url"]), flavor=WebhookFlavor(flavor), enabled=enabled)
        except ValueError:
            logger.warning("unknown_webhook_flavor", flavor=flavor)
            return None

    logger.warning("channel_skipped", type=kind)
    return None
