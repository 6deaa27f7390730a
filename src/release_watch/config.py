"""Configuration management."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from release_watch.core.retry import (
    ANALYSIS_POLICY,
    DELIVERY_POLICY,
    RELEASE_SOURCE_POLICY,
    STATE_STORE_POLICY,
    RetryPolicy,
)


def _copy(policy: RetryPolicy) -> RetryPolicy:
    return RetryPolicy(
        limit=policy.limit,
        delay=policy.delay,
        backoff=policy.backoff,
        timeout=policy.timeout,
        max_delay=policy.max_delay,
    )


@dataclass
class ClaudeConfig:
    """Claude API settings."""
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 600
    temperature: float = 0.3
    request_delay: float = 1.5
    request_timeout: float = 60.0


@dataclass
class PathsConfig:
    """Path settings."""
    data_dir: Path = Path("data")
    subscriptions_file: Path = Path("subscriptions.yaml")

    @property
    def state_dir(self) -> Path:
        return self.data_dir / "notified"

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "analysis"

    @property
    def journal_dir(self) -> Path:
        return self.data_dir / "runs"

    @property
    def stats_file(self) -> Path:
        return self.data_dir / "stats.yaml"


@dataclass
class WorkflowConfig:
    """Release check workflow settings."""
    max_concurrency: int = 10
    analysis_enabled: bool = True
    journal_retention_days: int = 14


@dataclass
class RetryConfig:
    """Retry policies per external dependency."""
    release_source: RetryPolicy = field(default_factory=lambda: _copy(RELEASE_SOURCE_POLICY))
    delivery: RetryPolicy = field(default_factory=lambda: _copy(DELIVERY_POLICY))
    state_store: RetryPolicy = field(default_factory=lambda: _copy(STATE_STORE_POLICY))
    analysis: RetryPolicy = field(default_factory=lambda: _copy(ANALYSIS_POLICY))


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "console"


@dataclass
class Settings:
    """Application settings."""

    # API keys (from environment only)
    github_token: Optional[str] = None
    anthropic_api_key: str = ""
    telegram_bot_token: str = ""

    # Config sections
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(config_path: Path = Path("config.yaml")) -> dict:
    """Load configuration from YAML file."""
    if not config_path.exists():
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_settings(config_path: Path = Path("config.yaml")) -> Settings:
    """Get application settings from YAML config and environment."""
    config = load_config(config_path)

    settings = Settings(
        github_token=os.getenv("GITHUB_TOKEN") or None,
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
    )

    if "claude" in config:
        for key, value in config["claude"].items():
            setattr(settings.claude, key, value)

    if "paths" in config:
        for key, value in config["paths"].items():
            setattr(settings.paths, key, Path(value))

    if "workflow" in config:
        for key, value in config["workflow"].items():
            setattr(settings.workflow, key, value)

    if "retry" in config:
        for dependency, overrides in config["retry"].items():
            current = getattr(settings.retry, dependency)
            merged = {
                "limit": current.limit,
                "delay": current.delay,
                "backoff": current.backoff,
                "timeout": current.timeout,
                "max_delay": current.max_delay,
                **(overrides or {}),
            }
            setattr(settings.retry, dependency, RetryPolicy.from_dict(merged))

    if "logging" in config:
        for key, value in config["logging"].items():
            setattr(settings.logging, key, value)

    # Environment wins over the file for logging
    settings.logging.level = os.getenv("RELEASE_WATCH_LOG_LEVEL", settings.logging.level).upper()
    settings.logging.format = os.getenv("RELEASE_WATCH_LOG_FORMAT", settings.logging.format)

    return settings
