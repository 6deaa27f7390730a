"""Error taxonomy shared by the workflow and its adapters."""

from typing import Optional


class ReleaseWatchError(Exception):
    """Base exception for release-watch."""


class TransientError(ReleaseWatchError):
    """External failure worth retrying (rate limits, server errors)."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class NonRetryableError(ReleaseWatchError):
    """Raised immediately by the retry loop, never retried."""


class ConfigurationError(NonRetryableError):
    """Missing credentials or endpoints for a dependency."""


class ChangelogParseError(NonRetryableError):
    """Changelog file has no recognizable version heading."""


class AnalysisParseError(NonRetryableError):
    """Analysis backend returned output that cannot be parsed."""


class AnalysisError(NonRetryableError):
    """Analysis backend rejected the request."""


class DeliveryError(NonRetryableError):
    """A channel rejected the message."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReleaseSourceError(NonRetryableError):
    """Release hosting API refused the request for a non-transient reason."""
