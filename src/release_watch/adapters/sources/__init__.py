"""Source adapters for fetching releases."""

from release_watch.adapters.sources.changelog import parse_changelog
from release_watch.adapters.sources.github_source import GitHubReleaseSource

__all__ = ["GitHubReleaseSource", "parse_changelog"]
