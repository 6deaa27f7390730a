"""Core interfaces for adapters."""

from abc import ABC, abstractmethod
from typing import Optional

from release_watch.core.entities import (
    AnalysisResult,
    Channel,
    NotificationPayload,
    ReleaseInfo,
    Subscription,
)


class ReleaseSource(ABC):
    """Interface for fetching the latest release of a repository."""

    @abstractmethod
    async def fetch_latest_release(self, repository: str) -> Optional[ReleaseInfo]:
        """Return the current release, or None when nothing is published."""
        pass


class ReleaseAnalyzer(ABC):
    """Interface for the release analysis backend."""

    @abstractmethod
    async def analyze(
        self, repository: str, tag: str, title: Optional[str], body: str
    ) -> AnalysisResult:
        """Summarize and categorize release notes."""
        pass


class AnalysisStore(ABC):
    """Interface for persisting analysis results per release."""

    @abstractmethod
    async def get(self, repository: str, tag: str) -> Optional[AnalysisResult]:
        pass

    @abstractmethod
    async def set(self, repository: str, tag: str, analysis: AnalysisResult) -> None:
        pass


class Notifier(ABC):
    """Interface for delivering a notification to one channel."""

    @abstractmethod
    async def send(self, channel: Channel, payload: NotificationPayload) -> None:
        """Send the payload, raising on any failure."""
        pass


class SubscriptionDirectory(ABC):
    """Read-only view of who tracks what."""

    @abstractmethod
    async def list_all_subscriptions(self) -> list[Subscription]:
        """List every subscriber with its tracked repositories."""
        pass

    @abstractmethod
    async def is_paused(self, subscriber_id: str, repository: str) -> bool:
        """Check whether a tracked repository is paused for a subscriber."""
        pass

    @abstractmethod
    async def list_channels(self, subscriber_id: str) -> list[Channel]:
        """List the subscriber's configured delivery channels."""
        pass
