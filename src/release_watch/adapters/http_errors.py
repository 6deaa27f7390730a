"""Shared mapping of HTTP responses onto the error taxonomy."""

from typing import Optional

import httpx

from release_watch.core.exceptions import ConfigurationError, TransientError


def retry_after_seconds(response: httpx.Response) -> Optional[float]:
    """Read a Retry-After header given in seconds."""
    retry_after = response.headers.get("retry-after")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            pass
    return None


def raise_for_transient(response: httpx.Response, service: str) -> None:
    """Raise for responses that must be retried or that signal bad credentials.

    429 and 5xx become TransientError, 401 becomes ConfigurationError. Other
    statuses are left for the caller to interpret.
    """
    status = response.status_code

    if status == 429 or status >= 500:
        raise TransientError(
            f"{service} returned HTTP {status}",
            retry_after=retry_after_seconds(response),
        )

    if status == 401:
        raise ConfigurationError(f"{service} rejected the credentials (HTTP 401)")
