"""Retry policies for external dependencies.

Each dependency class gets its own policy: a flaky hosting API backs off
exponentially over minutes, chat sends back off linearly over seconds, and
local stores retry quickly at a constant pace.

Usage:
    policy = RetryPolicy(limit=3, delay=5.0, backoff=Backoff.LINEAR, timeout=30.0)
    result = await retry_call(policy, lambda: client.send(channel, payload))
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from release_watch.core.exceptions import NonRetryableError, TransientError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Backoff(str, Enum):
    """Delay growth between attempts."""

    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass
class RetryPolicy:
    """Retry limit, backoff shape and per-attempt timeout."""

    limit: int = 2
    delay: float = 1.0
    backoff: Backoff = Backoff.CONSTANT
    timeout: Optional[float] = 10.0
    max_delay: Optional[float] = None

    def __post_init__(self) -> None:
        self.backoff = Backoff(self.backoff)
        if self.limit < 0:
            raise ValueError("Retry limit cannot be negative")
        if self.delay < 0:
            raise ValueError("Retry delay cannot be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        if self.backoff == Backoff.EXPONENTIAL:
            delay = self.delay * (2 ** (attempt - 1))
        elif self.backoff == Backoff.LINEAR:
            delay = self.delay * attempt
        else:
            delay = self.delay

        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    @classmethod
    def from_dict(cls, data: dict) -> "RetryPolicy":
        return cls(**data)


# Defaults per dependency class
RELEASE_SOURCE_POLICY = RetryPolicy(limit=5, delay=30.0, backoff=Backoff.EXPONENTIAL, timeout=120.0)
DELIVERY_POLICY = RetryPolicy(limit=3, delay=5.0, backoff=Backoff.LINEAR, timeout=30.0)
STATE_STORE_POLICY = RetryPolicy(limit=2, delay=1.0, backoff=Backoff.CONSTANT, timeout=10.0)
ANALYSIS_POLICY = RetryPolicy(limit=2, delay=2.0, backoff=Backoff.EXPONENTIAL, timeout=30.0)

# Policy that runs a call exactly once
NO_RETRY = RetryPolicy(limit=0, delay=0.0, timeout=None)


async def retry_call(
    policy: RetryPolicy,
    fn: Callable[[], Awaitable[T]],
    name: str = "call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``fn`` under ``policy``, re-raising the last error once exhausted.

    Args:
        policy: Retry limit, backoff and timeout to apply
        fn: Zero-argument coroutine factory, called once per attempt
        name: Label used in log lines
        sleep: Sleep function (replaced in tests)

    Raises:
        NonRetryableError: Immediately, without further attempts
        Exception: The last error after all retries are exhausted
    """
    attempts = policy.limit + 1

    for attempt in range(1, attempts + 1):
        try:
            if policy.timeout is None:
                return await fn()
            return await asyncio.wait_for(fn(), timeout=policy.timeout)
        except NonRetryableError:
            raise
        except Exception as e:
            if attempt >= attempts:
                logger.warning(
                    "retries_exhausted",
                    step=name,
                    attempts=attempts,
                    error=f"{type(e).__name__}: {e}",
                )
                raise

            delay = policy.delay_for(attempt)
            # Honour an explicit Retry-After when it asks for a longer wait
            if isinstance(e, TransientError) and e.retry_after:
                delay = max(delay, e.retry_after)

            logger.info(
                "retrying",
                step=name,
                attempt=attempt,
                max_attempts=attempts,
                delay=round(delay, 2),
                error=f"{type(e).__name__}: {e}",
            )
            await sleep(delay)

    raise RuntimeError(f"{name} failed without raising")  # pragma: no cover
