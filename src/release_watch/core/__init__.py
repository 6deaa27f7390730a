"""Core domain layer."""

from release_watch.core.analysis_cache import AnalysisCache, FileAnalysisStore
from release_watch.core.delivery_state import DeliveryStateStore
from release_watch.core.entities import (
    AnalysisResult,
    ChangelogEntry,
    Channel,
    ChatChannel,
    DeliveryRecord,
    NotificationPayload,
    Release,
    ReleaseCategory,
    ReleaseInfo,
    RunResult,
    Subscription,
    WebhookChannel,
    WebhookFlavor,
)
from release_watch.core.interfaces import (
    AnalysisStore,
    Notifier,
    ReleaseAnalyzer,
    ReleaseSource,
    SubscriptionDirectory,
)
from release_watch.core.journal import StepJournal, StepRunner
from release_watch.core.retry import Backoff, RetryPolicy, retry_call
from release_watch.core.stats import StatsCounters

__all__ = [
    "AnalysisCache",
    "AnalysisResult",
    "AnalysisStore",
    "Backoff",
    "ChangelogEntry",
    "Channel",
    "ChatChannel",
    "DeliveryRecord",
    "DeliveryStateStore",
    "FileAnalysisStore",
    "NotificationPayload",
    "Notifier",
    "Release",
    "ReleaseAnalyzer",
    "ReleaseCategory",
    "ReleaseInfo",
    "ReleaseSource",
    "RetryPolicy",
    "RunResult",
    "StatsCounters",
    "StepJournal",
    "StepRunner",
    "Subscription",
    "SubscriptionDirectory",
    "WebhookChannel",
    "WebhookFlavor",
    "retry_call",
]
