"""Core domain entities."""

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class ReleaseCategory(str, Enum):
    """Category assigned to a release by analysis."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    SECURITY = "security"
    BREAKING = "breaking"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: object) -> "ReleaseCategory":
        """Map any value onto the enumeration, defaulting to UNKNOWN."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


def parse_full_name(full_name: str) -> tuple[str, str]:
    """Split an ``owner/name`` repository key."""
    parts = full_name.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Invalid repository key: {full_name!r}")
    return parts[0], parts[1]


@dataclass(frozen=True)
class Release:
    """A published release from the hosting API."""

    tag: str
    url: str
    name: Optional[str] = None
    body: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.tag:
            raise ValueError("Tag cannot be empty")

    @property
    def title(self) -> str:
        return self.name or self.tag

    @property
    def text(self) -> Optional[str]:
        return self.body

    def to_dict(self) -> dict:
        return {"type": "release", **asdict(self)}


@dataclass(frozen=True)
class ChangelogEntry:
    """Release-equivalent data parsed from a changelog file."""

    version: str
    content: str
    url: str
    date: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.version:
            raise ValueError("Version cannot be empty")

    @property
    def tag(self) -> str:
        return self.version

    @property
    def title(self) -> str:
        return f"v{self.version}"

    @property
    def text(self) -> Optional[str]:
        return self.content

    def to_dict(self) -> dict:
        return {"type": "changelog", **asdict(self)}


ReleaseInfo = Union[Release, ChangelogEntry]


def release_info_from_dict(data: Optional[dict]) -> Optional[ReleaseInfo]:
    """Rebuild a ReleaseInfo variant from its ``to_dict`` form."""
    if data is None:
        return None

    fields = dict(data)
    kind = fields.pop("type", None)
    if kind == "release":
        return Release(**fields)
    if kind == "changelog":
        return ChangelogEntry(**fields)
    raise ValueError(f"Unknown release info type: {kind!r}")


@dataclass(frozen=True)
class AnalysisResult:
    """Summary and categorization of a release."""

    summary: str
    category: ReleaseCategory = ReleaseCategory.UNKNOWN
    has_breaking_changes: bool = False
    highlights: tuple[str, ...] = ()

    MAX_HIGHLIGHTS = 3
    MAX_HIGHLIGHT_LENGTH = 200
    MAX_SUMMARY_LENGTH = 500

    @classmethod
    def from_raw(cls, data: dict) -> "AnalysisResult":
        """Build a bounded result from loosely structured backend output.

        Accepts both ``hasBreakingChanges`` and ``has_breaking_changes`` keys.
        Unknown categories become ``unknown``, highlights are capped at three
        short entries and the summary is truncated. Highlights that are not a
        list are rejected.
        """
        if not isinstance(data, dict):
            raise ValueError("Analysis output must be an object")

        summary = str(data.get("summary") or "").strip()
        if not summary:
            raise ValueError("Analysis output has no summary")

        breaking = data.get("hasBreakingChanges", data.get("has_breaking_changes", False))

        raw_highlights = data.get("highlights") or []
        if isinstance(raw_highlights, str):
            raw_highlights = [raw_highlights]
        if not isinstance(raw_highlights, (list, tuple)):
            raise ValueError("Analysis highlights must be a list")
        highlights = tuple(
            str(h).strip()[:cls.MAX_HIGHLIGHT_LENGTH] for h in raw_highlights if str(h).strip()
        )[:cls.MAX_HIGHLIGHTS]

        return cls(
            summary=summary[:cls.MAX_SUMMARY_LENGTH],
            category=ReleaseCategory.coerce(data.get("category")),
            has_breaking_changes=bool(breaking),
            highlights=highlights,
        )

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "category": self.category.value,
            "has_breaking_changes": self.has_breaking_changes,
            "highlights": list(self.highlights),
        }


def analysis_from_dict(data: Optional[dict]) -> Optional[AnalysisResult]:
    """Rebuild an AnalysisResult from its ``to_dict`` form."""
    if data is None:
        return None
    return AnalysisResult.from_raw(data)


class WebhookFlavor(str, Enum):
    """Payload shape expected by a webhook endpoint."""

    DISCORD = "discord"
    SLACK = "slack"


@dataclass(frozen=True)
class ChatChannel:
    """Chat bot destination (e.g. a Telegram chat)."""

    chat_id: str
    enabled: bool = True

    @property
    def key(self) -> str:
        return f"chat:{self.chat_id}"


@dataclass(frozen=True)
class WebhookChannel:
    """Incoming webhook destination."""

    url: str
    flavor: WebhookFlavor = WebhookFlavor.DISCORD
    enabled: bool = True

    @property
    def key(self) -> str:
        # Webhook URLs embed secrets, keep them out of step names and logs
        url_hash = hashlib.md5(self.url.encode()).hexdigest()[:8]
        return f"webhook:{self.flavor.value}:{url_hash}"


Channel = Union[ChatChannel, WebhookChannel]


@dataclass
class Subscription:
    """One subscriber's row in a directory snapshot."""

    subscriber_id: str
    repositories: list[str]
    paused: set[str] = field(default_factory=set)
    channels: list[Channel] = field(default_factory=list)


@dataclass(frozen=True)
class NotificationPayload:
    """Channel-independent description of a release notification."""

    repository: str
    tag: str
    url: str
    published_at: str
    release_name: Optional[str] = None
    body: Optional[str] = None
    author: Optional[str] = None
    analysis: Optional[AnalysisResult] = None

    @property
    def title(self) -> str:
        return self.release_name or self.tag

    @classmethod
    def from_release(
        cls,
        repository: str,
        release: ReleaseInfo,
        analysis: Optional[AnalysisResult],
        fallback_time: datetime,
    ) -> "NotificationPayload":
        """Normalize either ReleaseInfo variant into a payload."""
        if isinstance(release, Release):
            return cls(
                repository=repository,
                tag=release.tag,
                url=release.url,
                published_at=release.published_at or fallback_time.isoformat(),
                release_name=release.name,
                body=release.body,
                author=release.author,
                analysis=analysis,
            )

        return cls(
            repository=repository,
            tag=release.version,
            url=release.url,
            published_at=release.date or fallback_time.isoformat(),
            release_name=release.title,
            body=release.content,
            author=None,
            analysis=analysis,
        )


@dataclass(frozen=True)
class DeliveryRecord:
    """Last release tag delivered to a subscriber for a repository."""

    subscriber_id: str
    repository: str
    tag: str
    recorded_at: str


@dataclass
class RunResult:
    """Aggregate outcome of one release-check run."""

    run_id: str
    repositories_processed: int = 0
    notifications_sent: int = 0

    def to_dict(self) -> dict:
        return asdict(self)
