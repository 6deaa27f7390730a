"""Tests for the release check workflow."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock

import pytest
from structlog.testing import capture_logs

from release_watch.config import RetryConfig
from release_watch.core import (
    AnalysisCache,
    AnalysisResult,
    ChangelogEntry,
    Channel,
    ChatChannel,
    DeliveryStateStore,
    FileAnalysisStore,
    NotificationPayload,
    Notifier,
    Release,
    ReleaseCategory,
    RetryPolicy,
    StatsCounters,
    StepJournal,
    Subscription,
    SubscriptionDirectory,
    WebhookChannel,
)
from release_watch.core.exceptions import DeliveryError, TransientError
from release_watch.core.stats import NOTIFICATIONS_SENT, RELEASES_NOTIFIED
from release_watch.use_cases import ReleaseCheckWorkflow, make_run_id

TRIGGERED_AT = datetime(2024, 3, 2, 12, 0, tzinfo=timezone.utc)
LATER = datetime(2024, 3, 2, 18, 0, tzinfo=timezone.utc)

NOTES = "Adds the plugin system and removes the legacy config loader."


class FakeDirectory(SubscriptionDirectory):
    """In-memory subscription directory."""

    def __init__(self, subscriptions: list[Subscription]) -> None:
        self.subscriptions = {s.subscriber_id: s for s in subscriptions}

    async def list_all_subscriptions(self) -> list[Subscription]:
        return list(self.subscriptions.values())

    async def is_paused(self, subscriber_id: str, repository: str) -> bool:
        return repository in self.subscriptions[subscriber_id].paused

    async def list_channels(self, subscriber_id: str) -> list[Channel]:
        return list(self.subscriptions[subscriber_id].channels)


class FakeNotifier(Notifier):
    """Records sends; channels listed in ``failing`` always fail."""

    def __init__(self, failing: Optional[set[str]] = None) -> None:
        self.failing = failing or set()
        self.sent: list[tuple[str, NotificationPayload]] = []

    async def send(self, channel: Channel, payload: NotificationPayload) -> None:
        if channel.key in self.failing:
            raise DeliveryError(f"{channel.key} rejected the message", status_code=400)
        self.sent.append((channel.key, payload))


class BrokenDeliveryState(DeliveryStateStore):
    """Delivery state whose writes always fail."""

    async def set(self, subscriber_id: str, repository: str, tag: str):
        raise OSError("disk full")


def fast_retry() -> RetryConfig:
    """Retry once without waiting."""
    policy = RetryPolicy(limit=1, delay=0.0, timeout=None)
    return RetryConfig(release_source=policy, delivery=policy, state_store=policy, analysis=policy)


def make_source(releases: dict) -> AsyncMock:
    """Release source returning ``releases[repository]`` or raising it."""
    async def fetch(repository: str):
        value = releases.get(repository)
        if isinstance(value, Exception):
            raise value
        return value

    source = AsyncMock()
    source.fetch_latest_release.side_effect = fetch
    return source


def widget_release(tag: str = "v2.0.0") -> Release:
    return Release(
        tag=tag,
        url=f"https://github.com/acme/widget/releases/tag/{tag}",
        name=f"Widget {tag}",
        body=NOTES,
        author="octocat",
        published_at="2024-03-01T10:00:00+00:00",
    )


def make_workflow(
    tmp_path: Path,
    subscriptions: list[Subscription],
    releases: dict,
    notifier: Optional[Notifier] = None,
    delivery_state: Optional[DeliveryStateStore] = None,
    analysis_cache: Optional[AnalysisCache] = None,
    journal: bool = False,
) -> ReleaseCheckWorkflow:
    return ReleaseCheckWorkflow(
        directory=FakeDirectory(subscriptions),
        source=make_source(releases),
        notifier=notifier or FakeNotifier(),
        delivery_state=delivery_state or DeliveryStateStore(tmp_path / "notified"),
        stats=StatsCounters(tmp_path / "stats.yaml"),
        analysis_cache=analysis_cache,
        retry=fast_retry(),
        journal_dir=tmp_path / "runs" if journal else None,
        sleep=AsyncMock(),
    )


def test_make_run_id() -> None:
    """Test run ids are derived from the trigger time."""
    assert make_run_id(TRIGGERED_AT) == "release-check-20240302T120000"


@pytest.mark.asyncio
async def test_new_release_notifies_subscriber(tmp_path: Path) -> None:
    """Test a new release reaches the subscriber and is recorded."""
    notifier = FakeNotifier()
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42")])],
        {"acme/widget": widget_release()},
        notifier=notifier,
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.repositories_processed == 1
    assert result.notifications_sent == 1
    assert len(notifier.sent) == 1

    channel_key, payload = notifier.sent[0]
    assert channel_key == "chat:42"
    assert payload.repository == "acme/widget"
    assert payload.tag == "v2.0.0"
    assert payload.author == "octocat"
    assert payload.body == NOTES

    assert await workflow.delivery_state.get("U1", "acme/widget") == "v2.0.0"
    assert await workflow.stats.get(NOTIFICATIONS_SENT) == 1
    assert await workflow.stats.get(RELEASES_NOTIFIED) == 1


@pytest.mark.asyncio
async def test_second_run_does_not_renotify(tmp_path: Path) -> None:
    """Test the same tag is never delivered twice."""
    notifier = FakeNotifier()
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42")])],
        {"acme/widget": widget_release()},
        notifier=notifier,
    )

    await workflow.run_release_check(TRIGGERED_AT)
    second = await workflow.run_release_check(LATER)

    assert second.repositories_processed == 1
    assert second.notifications_sent == 0
    assert len(notifier.sent) == 1
    assert await workflow.stats.get(NOTIFICATIONS_SENT) == 1


@pytest.mark.asyncio
async def test_newer_tag_is_delivered(tmp_path: Path) -> None:
    """Test a different tag than the recorded one is delivered."""
    notifier = FakeNotifier()
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42")])],
        {"acme/widget": widget_release("v2.1.0")},
        notifier=notifier,
    )
    await workflow.delivery_state.set("U1", "acme/widget", "v2.0.0")

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.notifications_sent == 1
    assert await workflow.delivery_state.get("U1", "acme/widget") == "v2.1.0"


@pytest.mark.asyncio
async def test_paused_subscription_is_skipped(tmp_path: Path) -> None:
    """Test paused repositories are neither sent nor recorded."""
    notifier = FakeNotifier()
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], paused={"acme/widget"}, channels=[ChatChannel("42")])],
        {"acme/widget": widget_release()},
        notifier=notifier,
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.notifications_sent == 0
    assert notifier.sent == []
    assert await workflow.delivery_state.get("U1", "acme/widget") is None
    assert await workflow.stats.get(RELEASES_NOTIFIED) == 0


@pytest.mark.asyncio
async def test_disabled_channels_are_skipped(tmp_path: Path) -> None:
    """Test a subscriber with only disabled channels gets nothing."""
    notifier = FakeNotifier()
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42", enabled=False)])],
        {"acme/widget": widget_release()},
        notifier=notifier,
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.notifications_sent == 0
    assert notifier.sent == []
    assert await workflow.delivery_state.get("U1", "acme/widget") is None


@pytest.mark.asyncio
async def test_repository_without_release(tmp_path: Path) -> None:
    """Test repositories with nothing published are not counted."""
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42")])],
        {"acme/widget": None},
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.repositories_processed == 0
    assert result.notifications_sent == 0


@pytest.mark.asyncio
async def test_no_subscriptions(tmp_path: Path) -> None:
    """Test an empty directory finishes without touching the source."""
    workflow = make_workflow(tmp_path, [], {})

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.repositories_processed == 0
    workflow.source.fetch_latest_release.assert_not_called()


@pytest.mark.asyncio
async def test_counters_track_sends_and_releases(tmp_path: Path) -> None:
    """Test notification counts per channel and release counts per release."""
    notifier = FakeNotifier()
    workflow = make_workflow(
        tmp_path,
        [
            Subscription(
                "U1",
                ["acme/widget"],
                channels=[ChatChannel("42"), WebhookChannel("https://discord.com/api/webhooks/1/a")],
            ),
            Subscription("U2", ["acme/gadget"], channels=[ChatChannel("43")]),
        ],
        {
            "acme/widget": widget_release(),
            "acme/gadget": Release(tag="v0.3.0", url="https://github.com/acme/gadget/releases/tag/v0.3.0"),
        },
        notifier=notifier,
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.repositories_processed == 2
    assert result.notifications_sent == 3
    assert await workflow.stats.get(NOTIFICATIONS_SENT) == 3
    assert await workflow.stats.get(RELEASES_NOTIFIED) == 2


@pytest.mark.asyncio
async def test_release_counted_once_for_many_subscribers(tmp_path: Path) -> None:
    """Test one release fanned out to several subscribers counts once."""
    workflow = make_workflow(
        tmp_path,
        [Subscription(f"U{i}", ["acme/widget"], channels=[ChatChannel(str(i))]) for i in range(3)],
        {"acme/widget": widget_release()},
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.notifications_sent == 3
    assert await workflow.stats.get(RELEASES_NOTIFIED) == 1


@pytest.mark.asyncio
async def test_analysis_shared_across_subscribers(tmp_path: Path) -> None:
    """Test the analyzer runs once per release regardless of subscriber count."""
    analysis = AnalysisResult(
        summary="Plugin system lands; legacy loader removed.",
        category=ReleaseCategory.MAJOR,
        has_breaking_changes=True,
        highlights=("Plugins",),
    )
    analyzer = AsyncMock()
    analyzer.analyze.return_value = analysis

    notifier = FakeNotifier()
    cache = AnalysisCache(
        FileAnalysisStore(tmp_path / "analysis"),
        analyzer,
        store_policy=RetryPolicy(limit=0, delay=0.0, timeout=None),
        analysis_policy=RetryPolicy(limit=0, delay=0.0, timeout=None),
    )
    workflow = make_workflow(
        tmp_path,
        [Subscription(f"U{i}", ["acme/widget"], channels=[ChatChannel(str(i))]) for i in range(4)],
        {"acme/widget": widget_release()},
        notifier=notifier,
        analysis_cache=cache,
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.notifications_sent == 4
    analyzer.analyze.assert_awaited_once()
    assert all(payload.analysis == analysis for _, payload in notifier.sent)


@pytest.mark.asyncio
async def test_analysis_failure_falls_back_to_raw_notes(tmp_path: Path) -> None:
    """Test notifications still go out when analysis fails."""
    analyzer = AsyncMock()
    analyzer.analyze.side_effect = TransientError("overloaded")

    notifier = FakeNotifier()
    cache = AnalysisCache(
        FileAnalysisStore(tmp_path / "analysis"),
        analyzer,
        store_policy=RetryPolicy(limit=0, delay=0.0, timeout=None),
        analysis_policy=RetryPolicy(limit=0, delay=0.0, timeout=None),
    )
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42")])],
        {"acme/widget": widget_release()},
        notifier=notifier,
        analysis_cache=cache,
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.notifications_sent == 1
    _, payload = notifier.sent[0]
    assert payload.analysis is None
    assert payload.body == NOTES


@pytest.mark.asyncio
async def test_delivery_failure_is_isolated(tmp_path: Path) -> None:
    """Test one failing subscriber does not block the others."""
    notifier = FakeNotifier(failing={"chat:1"})
    workflow = make_workflow(
        tmp_path,
        [
            Subscription("U1", ["acme/widget"], channels=[ChatChannel("1")]),
            Subscription("U2", ["acme/widget"], channels=[ChatChannel("2")]),
        ],
        {"acme/widget": widget_release()},
        notifier=notifier,
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.notifications_sent == 1
    assert [key for key, _ in notifier.sent] == ["chat:2"]
    assert await workflow.delivery_state.get("U1", "acme/widget") is None
    assert await workflow.delivery_state.get("U2", "acme/widget") == "v2.0.0"


@pytest.mark.asyncio
async def test_partial_channel_failure_still_records(tmp_path: Path) -> None:
    """Test one delivered channel is enough to record the tag."""
    webhook = WebhookChannel("https://discord.com/api/webhooks/1/a")
    notifier = FakeNotifier(failing={webhook.key})
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42"), webhook])],
        {"acme/widget": widget_release()},
        notifier=notifier,
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.notifications_sent == 1
    assert await workflow.delivery_state.get("U1", "acme/widget") == "v2.0.0"


@pytest.mark.asyncio
async def test_fetch_failure_is_isolated(tmp_path: Path) -> None:
    """Test a repository whose fetch fails does not stop the others."""
    notifier = FakeNotifier()
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/broken", "acme/widget"], channels=[ChatChannel("42")])],
        {
            "acme/broken": TransientError("GitHub returned HTTP 502"),
            "acme/widget": widget_release(),
        },
        notifier=notifier,
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.repositories_processed == 1
    assert result.notifications_sent == 1
    # One retry for the failing repository, then it is skipped
    assert workflow.source.fetch_latest_release.await_count == 3


@pytest.mark.asyncio
async def test_changelog_release_is_delivered(tmp_path: Path) -> None:
    """Test changelog entries flow through like releases."""
    notifier = FakeNotifier()
    entry = ChangelogEntry(
        version="1.4.0",
        date="2024-03-01",
        content="### Added\n- Plugins",
        url="https://github.com/acme/widget/blob/HEAD/CHANGELOG.md",
    )
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42")])],
        {"acme/widget": entry},
        notifier=notifier,
    )

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.notifications_sent == 1
    _, payload = notifier.sent[0]
    assert payload.tag == "1.4.0"
    assert payload.release_name == "v1.4.0"
    assert await workflow.delivery_state.get("U1", "acme/widget") == "1.4.0"


@pytest.mark.asyncio
async def test_state_write_failure_reports_duplicate_risk(tmp_path: Path) -> None:
    """Test a send whose record fails is still counted and flagged."""
    notifier = FakeNotifier()
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42")])],
        {"acme/widget": widget_release()},
        notifier=notifier,
        delivery_state=BrokenDeliveryState(tmp_path / "notified"),
    )

    with capture_logs() as logs:
        result = await workflow.run_release_check(TRIGGERED_AT)

    assert result.notifications_sent == 1
    assert len(notifier.sent) == 1
    assert await workflow.stats.get(NOTIFICATIONS_SENT) == 1

    risks = [entry for entry in logs if entry["event"] == "duplicate_risk"]
    assert len(risks) == 1
    assert risks[0]["log_level"] == "error"
    assert risks[0]["subscriber"] == "U1"


@pytest.mark.asyncio
async def test_resume_skips_journaled_sends(tmp_path: Path) -> None:
    """Test a resumed run does not repeat a send that already completed."""
    notifier = FakeNotifier()
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42")])],
        {"acme/widget": widget_release()},
        notifier=notifier,
        journal=True,
    )

    # The interrupted run got as far as the send
    run_id = make_run_id(TRIGGERED_AT)
    journal = StepJournal.for_run(tmp_path / "runs", run_id)
    await journal.record("notify:acme/widget:U1:chat:42", None)

    result = await workflow.run_release_check(TRIGGERED_AT)

    assert notifier.sent == []
    assert result.notifications_sent == 1
    assert await workflow.delivery_state.get("U1", "acme/widget") == "v2.0.0"
    assert await workflow.stats.get(NOTIFICATIONS_SENT) == 1


@pytest.mark.asyncio
async def test_completed_run_is_not_repeated(tmp_path: Path) -> None:
    """Test re-running a finished run returns its stored result."""
    notifier = FakeNotifier()
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42")])],
        {"acme/widget": widget_release()},
        notifier=notifier,
        journal=True,
    )

    first = await workflow.run_release_check(TRIGGERED_AT)
    again = await workflow.run_release_check(TRIGGERED_AT)

    assert again == first
    assert len(notifier.sent) == 1
    assert workflow.source.fetch_latest_release.await_count == 1


@pytest.mark.asyncio
async def test_resume_replays_fetched_release(tmp_path: Path) -> None:
    """Test journaled fetches are not repeated on resume."""
    workflow = make_workflow(
        tmp_path,
        [Subscription("U1", ["acme/widget"], channels=[ChatChannel("42")])],
        {"acme/widget": widget_release()},
        journal=True,
    )

    run_id = make_run_id(TRIGGERED_AT)
    journal = StepJournal.for_run(tmp_path / "runs", run_id)
    await journal.record("fetch:acme/widget", widget_release("v2.0.1").to_dict())

    result = await workflow.run_release_check(TRIGGERED_AT)

    workflow.source.fetch_latest_release.assert_not_called()
    assert result.notifications_sent == 1
    assert await workflow.delivery_state.get("U1", "acme/widget") == "v2.0.1"
