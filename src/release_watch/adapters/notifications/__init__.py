"""Notification adapters."""

from release_watch.adapters.notifications.router import NotificationRouter
from release_watch.adapters.notifications.telegram_notifier import TelegramNotifier
from release_watch.adapters.notifications.webhook_notifier import WebhookNotifier

__all__ = ["NotificationRouter", "TelegramNotifier", "WebhookNotifier"]
