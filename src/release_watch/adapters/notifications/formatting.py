"""Text helpers shared by the channel notifiers."""

from typing import Optional

from release_watch.core import NotificationPayload, ReleaseCategory

BODY_PREVIEW_LENGTH = 500

CATEGORY_LABEL = {
    ReleaseCategory.MAJOR: "🚀 Major Release",
    ReleaseCategory.MINOR: "✨ Minor Release",
    ReleaseCategory.PATCH: "🔧 Patch",
    ReleaseCategory.SECURITY: "🔒 Security Fix",
    ReleaseCategory.BREAKING: "⚠️ Breaking Changes",
    ReleaseCategory.UNKNOWN: "📦 New Release",
}


def category_of(payload: NotificationPayload) -> ReleaseCategory:
    return payload.analysis.category if payload.analysis else ReleaseCategory.UNKNOWN


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    """Cut ``text`` to at most ``limit`` characters including the suffix."""
    if len(text) <= limit:
        return text
    return text[:max(limit - len(suffix), 0)] + suffix


def body_preview(body: Optional[str], limit: int = BODY_PREVIEW_LENGTH) -> str:
    """Release notes shortened for a message, used when there is no summary."""
    if not body or not body.strip():
        return "No release notes"
    body = body.strip()
    if len(body) > limit:
        return body[:limit] + "..."
    return body
