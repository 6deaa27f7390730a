"""CLI entry point for release watch."""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer

from release_watch.adapters.directory import YamlSubscriptionDirectory
from release_watch.adapters.llm import ClaudeAnalyzer
from release_watch.adapters.notifications import (
    NotificationRouter,
    TelegramNotifier,
    WebhookNotifier,
)
from release_watch.adapters.sources import GitHubReleaseSource
from release_watch.config import Settings, get_settings
from release_watch.core import (
    AnalysisCache,
    DeliveryStateStore,
    FileAnalysisStore,
    RunResult,
    StatsCounters,
)
from release_watch.log import get_logger, setup_logging
from release_watch.use_cases import ReleaseCheckWorkflow

app = typer.Typer(help="Watch repositories for new releases and notify subscribers.")


def build_workflow(settings: Settings) -> ReleaseCheckWorkflow:
    """Wire every collaborator from settings."""
    paths = settings.paths

    analysis_cache = None
    if settings.workflow.analysis_enabled:
        analyzer = ClaudeAnalyzer(settings) if settings.anthropic_api_key else None
        analysis_cache = AnalysisCache(
            store=FileAnalysisStore(paths.cache_dir),
            analyzer=analyzer,
            store_policy=settings.retry.state_store,
            analysis_policy=settings.retry.analysis,
        )

    return ReleaseCheckWorkflow(
        directory=YamlSubscriptionDirectory(paths.subscriptions_file),
        source=GitHubReleaseSource(token=settings.github_token),
        notifier=NotificationRouter(
            chat=TelegramNotifier(settings.telegram_bot_token),
            webhook=WebhookNotifier(),
        ),
        delivery_state=DeliveryStateStore(paths.state_dir),
        stats=StatsCounters(paths.stats_file),
        analysis_cache=analysis_cache,
        retry=settings.retry,
        journal_dir=paths.journal_dir,
        journal_retention_days=settings.workflow.journal_retention_days,
        max_concurrency=settings.workflow.max_concurrency,
    )


@app.command()
def run(
    config: Path = typer.Option(Path("config.yaml"), "--config", "-c", help="Path to config.yaml"),
    triggered_at: Optional[datetime] = typer.Option(
        None, "--triggered-at", help="Trigger timestamp (defaults to now, UTC)"
    ),
    resume: Optional[str] = typer.Option(None, "--resume", help="Run id of an interrupted run to resume"),
) -> None:
    """Run one release check across all tracked repositories."""
    settings = get_settings(config)
    setup_logging(settings.logging.level, settings.logging.format)
    logger = get_logger(__name__)

    if not settings.github_token:
        logger.warning("github_token_missing", detail="unauthenticated rate limit applies")
    if not settings.telegram_bot_token:
        logger.warning("telegram_bot_token_missing", detail="chat channels will fail")
    if settings.workflow.analysis_enabled and not settings.anthropic_api_key:
        logger.warning("anthropic_api_key_missing", detail="notifications carry raw release notes")

    when = triggered_at or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    workflow = build_workflow(settings)
    result: RunResult = asyncio.run(workflow.run_release_check(when, run_id=resume))

    typer.echo(json.dumps(result.to_dict(), indent=2))


@app.command()
def stats(
    config: Path = typer.Option(Path("config.yaml"), "--config", "-c", help="Path to config.yaml"),
) -> None:
    """Show aggregate notification counters."""
    settings = get_settings(config)
    counters = asyncio.run(StatsCounters(settings.paths.stats_file).get_all())
    typer.echo(json.dumps(counters, indent=2, sort_keys=True))


if __name__ == "__main__":
    app()
