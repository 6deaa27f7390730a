"""Release check workflow: fetch, analyze, fan out, record."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import structlog

from release_watch.config import RetryConfig
from release_watch.core import (
    AnalysisCache,
    Channel,
    ChatChannel,
    DeliveryStateStore,
    NotificationPayload,
    Notifier,
    ReleaseInfo,
    ReleaseSource,
    RunResult,
    StatsCounters,
    StepJournal,
    StepRunner,
    Subscription,
    SubscriptionDirectory,
    WebhookChannel,
    WebhookFlavor,
)
from release_watch.core.entities import release_info_from_dict
from release_watch.core.journal import COMPLETED_MARKER, prune_journals
from release_watch.core.retry import NO_RETRY
from release_watch.core.stats import NOTIFICATIONS_SENT, RELEASES_NOTIFIED

logger = structlog.get_logger(__name__)


def make_run_id(triggered_at: datetime) -> str:
    """Run id derived from the trigger time; reusing it resumes the run."""
    return f"release-check-{triggered_at.strftime('%Y%m%dT%H%M%S')}"


def _encode_release(release: Optional[ReleaseInfo]) -> Optional[dict]:
    return release.to_dict() if release else None


def _encode_subscriptions(subscriptions: list[Subscription]) -> list[dict]:
    return [
        {"subscriber_id": s.subscriber_id, "repositories": list(s.repositories)}
        for s in subscriptions
    ]


def _decode_subscriptions(data: list[dict]) -> list[Subscription]:
    return [Subscription(subscriber_id=row["subscriber_id"], repositories=row["repositories"]) for row in data]


def _encode_channels(channels: list[Channel]) -> list[dict]:
    encoded = []
    for channel in channels:
        if isinstance(channel, ChatChannel):
            encoded.append({"type": "chat", "chat_id": channel.chat_id, "enabled": channel.enabled})
        else:
            encoded.append({
                "type": "webhook",
                "url": channel.url,
                "flavor": channel.flavor.value,
                "enabled": channel.enabled,
            })
    return encoded


def _decode_channels(data: list[dict]) -> list[Channel]:
    channels: list[Channel] = []
    for row in data:
        if row["type"] == "chat":
            channels.append(ChatChannel(chat_id=row["chat_id"], enabled=row["enabled"]))
        else:
            channels.append(WebhookChannel(
                url=row["url"],
                flavor=WebhookFlavor(row["flavor"]),
                enabled=row["enabled"],
            ))
    return channels


@dataclass
class _RepositoryRun:
    """Per-repository state shared by that repository's subscribers."""

    repository: str
    release: ReleaseInfo
    payload: NotificationPayload
    release_counted: bool = False

    @property
    def tag(self) -> str:
        return self.release.tag


class ReleaseCheckWorkflow:
    """Check every tracked repository and notify its subscribers.

    Each external call runs as a named step with the retry policy of the
    dependency it touches. With a journal directory configured, completed
    steps are recorded per run so a crashed run resumes where it stopped.
    Completed journals older than ``journal_retention_days`` are deleted at
    the start of each run.

    Within one (subscriber, repository) the order is always send, then
    record the tag, then count. If recording fails after a send, the
    notification still counts and the next run may repeat it once.
    """

    def __init__(
        self,
        directory: SubscriptionDirectory,
        source: ReleaseSource,
        notifier: Notifier,
        delivery_state: DeliveryStateStore,
        stats: StatsCounters,
        analysis_cache: Optional[AnalysisCache] = None,
        retry: Optional[RetryConfig] = None,
        journal_dir: Optional[Path] = None,
        journal_retention_days: Optional[float] = 14,
        max_concurrency: int = 10,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.directory = directory
        self.source = source
        self.notifier = notifier
        self.delivery_state = delivery_state
        self.stats = stats
        self.analysis_cache = analysis_cache
        self.retry = retry or RetryConfig()
        self.journal_dir = journal_dir
        self.journal_retention_days = journal_retention_days
        self.max_concurrency = max(1, max_concurrency)
        self.sleep = sleep

    async def run_release_check(
        self, triggered_at: datetime, run_id: Optional[str] = None
    ) -> RunResult:
        """Run one release check.

        Args:
            triggered_at: Time the scheduler fired
            run_id: Existing run to resume; derived from ``triggered_at`` if omitted

        Returns:
            Repositories that had a release and notifications sent
        """
        run_id = run_id or make_run_id(triggered_at)

        journal = None
        if self.journal_dir is not None:
            journal = StepJournal.for_run(self.journal_dir, run_id)
            if journal.completed:
                logger.info("run_already_completed", run_id=run_id)
                return RunResult(**journal.get(COMPLETED_MARKER))
            if self.journal_retention_days is not None:
                prune_journals(self.journal_dir, self.journal_retention_days)

        steps = StepRunner(journal, sleep=self.sleep)

        with structlog.contextvars.bound_contextvars(run_id=run_id):
            logger.info("run_started", triggered_at=triggered_at.isoformat(), resumed=bool(journal and len(journal)))
            result = await self._run(steps, run_id, triggered_at)
            logger.info(
                "run_completed",
                repositories_processed=result.repositories_processed,
                notifications_sent=result.notifications_sent,
            )

        if journal is not None:
            await journal.mark_completed(result.to_dict())

        return result

    async def _run(self, steps: StepRunner, run_id: str, triggered_at: datetime) -> RunResult:
        result = RunResult(run_id=run_id)

        subscriptions = await steps.do(
            "fetch-subscriptions",
            self.retry.state_store,
            self.directory.list_all_subscriptions,
            encode=_encode_subscriptions,
            decode=_decode_subscriptions,
        )

        if not subscriptions:
            logger.info("no_subscriptions")
            return result

        async def build_repo_map() -> dict[str, list[str]]:
            repo_map: dict[str, list[str]] = {}
            for subscription in subscriptions:
                for repository in subscription.repositories:
                    subscribers = repo_map.setdefault(repository, [])
                    if subscription.subscriber_id not in subscribers:
                        subscribers.append(subscription.subscriber_id)
            return repo_map

        repo_map = await steps.do("build-repo-map", NO_RETRY, build_repo_map)
        logger.info("fanout_built", repositories=len(repo_map), subscribers=len(subscriptions))

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(repository: str, subscriber_ids: list[str]) -> tuple[bool, int]:
            async with semaphore:
                return await self._process_repository(steps, repository, subscriber_ids, triggered_at)

        outcomes = await asyncio.gather(
            *(bounded(repository, subscriber_ids) for repository, subscriber_ids in repo_map.items()),
            return_exceptions=True,
        )

        for repository, outcome in zip(repo_map, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("repository_failed", repository=repository, error=f"{type(outcome).__name__}: {outcome}")
                continue
            had_release, sent = outcome
            if had_release:
                result.repositories_processed += 1
            result.notifications_sent += sent

        return result

    async def _process_repository(
        self,
        steps: StepRunner,
        repository: str,
        subscriber_ids: list[str],
        triggered_at: datetime,
    ) -> tuple[bool, int]:
        """Fetch, analyze and dispatch one repository.

        Returns:
            Tuple of (had_release, notifications_sent)
        """
        try:
            release = await steps.do(
                f"fetch:{repository}",
                self.retry.release_source,
                lambda: self.source.fetch_latest_release(repository),
                encode=_encode_release,
                decode=release_info_from_dict,
            )
        except Exception as e:
            logger.error("release_fetch_failed", repository=repository, error=f"{type(e).__name__}: {e}")
            return False, 0

        if release is None:
            logger.info("no_release", repository=repository)
            return False, 0

        analysis = None
        if self.analysis_cache is not None:
            try:
                analysis = await self.analysis_cache.resolve(
                    repository, release.tag, release.title, release.text, steps=steps
                )
            except Exception as e:
                logger.error("analysis_resolve_failed", repository=repository, error=f"{type(e).__name__}: {e}")

        run = _RepositoryRun(
            repository=repository,
            release=release,
            payload=NotificationPayload.from_release(repository, release, analysis, triggered_at),
        )

        outcomes = await asyncio.gather(
            *(self._process_subscriber(steps, run, subscriber_id) for subscriber_id in subscriber_ids),
            return_exceptions=True,
        )

        sent = 0
        for subscriber_id, outcome in zip(subscriber_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "subscriber_failed",
                    repository=repository,
                    subscriber=subscriber_id,
                    error=f"{type(outcome).__name__}: {outcome}",
                )
                continue
            sent += outcome

        return True, sent

    async def _process_subscriber(self, steps: StepRunner, run: _RepositoryRun, subscriber_id: str) -> int:
        """Pause check, dedup check, dispatch, record, count. Returns sends."""
        repository, tag = run.repository, run.tag
        key = f"{repository}:{subscriber_id}"
        log = logger.bind(repository=repository, subscriber=subscriber_id, tag=tag)

        try:
            paused = await steps.do(
                f"pause:{key}",
                self.retry.state_store,
                lambda: self.directory.is_paused(subscriber_id, repository),
            )
            if paused:
                log.info("subscription_paused")
                return 0

            last_tag = await steps.do(
                f"check:{key}",
                self.retry.state_store,
                lambda: self.delivery_state.get(subscriber_id, repository),
            )
            if last_tag == tag:
                log.debug("already_notified")
                return 0

            channels = await steps.do(
                f"channels:{key}",
                self.retry.state_store,
                lambda: self.directory.list_channels(subscriber_id),
                encode=_encode_channels,
                decode=_decode_channels,
            )
        except Exception as e:
            log.error("subscriber_check_failed", error=f"{type(e).__name__}: {e}")
            return 0

        enabled = [channel for channel in channels if channel.enabled]
        if not enabled:
            log.info("no_enabled_channels")
            return 0

        sent_flags = await asyncio.gather(*(self._send(steps, run, key, channel, log) for channel in enabled))
        delivered = [channel for channel, sent in zip(enabled, sent_flags) if sent]

        if not delivered:
            return 0

        try:
            await steps.do(
                f"save:{key}",
                self.retry.state_store,
                lambda: self.delivery_state.set(subscriber_id, repository, tag),
                encode=lambda record: record.tag,
            )
        except Exception as e:
            # Already sent, so it still counts
            log.error(
                "duplicate_risk",
                channels=[channel.key for channel in delivered],
                error=f"{type(e).__name__}: {e}",
                detail="notification sent but delivery state not recorded, next run may repeat it",
            )

        for channel in delivered:
            await self._increment(steps, f"stats:notification:{key}:{channel.key}", NOTIFICATIONS_SENT)

        if not run.release_counted:
            run.release_counted = True
            await self._increment(steps, f"stats:release:{repository}:{tag}", RELEASES_NOTIFIED)

        log.info("subscriber_notified", channels=len(delivered))
        return len(delivered)

    async def _send(
        self,
        steps: StepRunner,
        run: _RepositoryRun,
        key: str,
        channel: Channel,
        log: Any,
    ) -> bool:
        try:
            await steps.do(
                f"notify:{key}:{channel.key}",
                self.retry.delivery,
                lambda: self.notifier.send(channel, run.payload),
            )
        except Exception as e:
            log.error("delivery_failed", channel=channel.key, error=f"{type(e).__name__}: {e}")
            return False
        return True

    async def _increment(self, steps: StepRunner, name: str, counter: str) -> None:
        """Increment a counter; failures are logged and never propagate."""
        try:
            await steps.do(name, self.retry.state_store, lambda: self.stats.increment(counter))
        except Exception as e:
            logger.warning("counter_increment_failed", counter=counter, step=name, error=f"{type(e).__name__}: {e}")
