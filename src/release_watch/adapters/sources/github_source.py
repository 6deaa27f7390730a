"""GitHub source for the latest release of a repository."""

from typing import Optional

import httpx
import structlog

from release_watch.adapters.http_errors import raise_for_transient, retry_after_seconds
from release_watch.adapters.sources.changelog import CHANGELOG_FILENAMES, parse_changelog
from release_watch.core import ReleaseInfo, ReleaseSource
from release_watch.core.entities import ChangelogEntry, Release, parse_full_name
from release_watch.core.exceptions import (
    ChangelogParseError,
    ReleaseSourceError,
    TransientError,
)

logger = structlog.get_logger(__name__)


class GitHubReleaseSource(ReleaseSource):
    """Fetch the newest published release, falling back to the changelog.

    Network errors, rate limits and server errors are raised so the caller's
    retry policy can handle them. A changelog that cannot be parsed is not
    retried: the repository simply has no release this run.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        api_base: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def fetch_latest_release(self, repository: str) -> Optional[ReleaseInfo]:
        """Return the latest non-draft release or changelog entry."""
        try:
            owner, repo = parse_full_name(repository)
        except ValueError as e:
            logger.warning("invalid_repository_key", repository=repository, error=str(e))
            return None

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            releases = await self._list_releases(client, owner, repo)
            if releases is None:
                return None

            # Drafts are unpublished, the API lists newest first
            for data in releases:
                if not data.get("draft"):
                    return self._create_release(data)

            return await self._fetch_changelog(client, owner, repo)

    async def _list_releases(
        self, client: httpx.AsyncClient, owner: str, repo: str
    ) -> Optional[list[dict]]:
        """List recent releases, or None if the repository does not exist."""
        response = await client.get(
            f"{self.api_base}/repos/{owner}/{repo}/releases",
            headers=self._get_headers(),
            params={"per_page": 10},
        )

        if response.status_code == 404:
            logger.warning("repository_not_found", repository=f"{owner}/{repo}")
            return None

        self._raise_for_status(response, f"{owner}/{repo}")

        return response.json()

    async def _fetch_changelog(
        self, client: httpx.AsyncClient, owner: str, repo: str
    ) -> Optional[ChangelogEntry]:
        headers = self._get_headers()
        headers["Accept"] = "application/vnd.github.raw+json"

        for filename in CHANGELOG_FILENAMES:
            response = await client.get(
                f"{self.api_base}/repos/{owner}/{repo}/contents/{filename}",
                headers=headers,
            )

            if response.status_code == 404:
                continue

            self._raise_for_status(response, f"{owner}/{repo}")

            url = f"https://github.com/{owner}/{repo}/blob/HEAD/{filename}"
            try:
                entry = parse_changelog(response.text, url)
            except ChangelogParseError as e:
                logger.warning(
                    "changelog_unparseable",
                    repository=f"{owner}/{repo}",
                    filename=filename,
                    error=str(e),
                )
                return None

            logger.info(
                "changelog_fallback",
                repository=f"{owner}/{repo}",
                filename=filename,
                version=entry.version,
            )
            return entry

        return None

    def _create_release(self, data: dict) -> Release:
        """Create release from API payload."""
        author = data.get("author") or {}
        return Release(
            tag=data["tag_name"],
            name=data.get("name") or None,
            body=data.get("body") or None,
            url=data["html_url"],
            author=author.get("login"),
            published_at=data.get("published_at"),
        )

    def _raise_for_status(self, response: httpx.Response, repository: str) -> None:
        raise_for_transient(response, "GitHub API")

        if response.status_code == 403:
            # Primary and secondary rate limits both answer 403
            if (
                response.headers.get("x-ratelimit-remaining") == "0"
                or response.headers.get("retry-after")
            ):
                raise TransientError(
                    f"GitHub rate limit hit for {repository}",
                    retry_after=retry_after_seconds(response),
                )

        if response.status_code >= 400:
            raise ReleaseSourceError(
                f"GitHub API returned HTTP {response.status_code} for {repository}"
            )

    def _get_headers(self) -> dict[str, str]:
        """Get headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        return headers
