"""Changelog parsing for repositories without structured releases."""

import re
from typing import Optional

from release_watch.core.entities import ChangelogEntry
from release_watch.core.exceptions import ChangelogParseError

# Checked in order, first file that exists wins
CHANGELOG_FILENAMES = (
    "CHANGELOG.md",
    "CHANGES.md",
    "HISTORY.md",
    "changelog.md",
    "NEWS.md",
)

MAX_CONTENT_LENGTH = 2000

HEADING = re.compile(r"^(?P<level>#{1,4})\s+(?P<text>.+?)\s*#*\s*$")

# [1.2.3], 1.2.3 or v1.2.3, optionally linked and followed by an ISO date:
#   ## [1.2.3] - 2024-03-01
#   ## v1.2.3 (2024-03-01)
#   ## [1.2.3](https://github.com/o/r/compare/v1.2.2...v1.2.3) (2024-03-01)
VERSION_HEADING = re.compile(
    r"^\[?v?(?P<version>\d+\.\d+(?:\.\d+)?(?:-[0-9A-Za-z][0-9A-Za-z.]*)?(?:\+[0-9A-Za-z.]+)?)\]?"
    r"(?:\([^)\s]*\))?"
    r"(?:\s*[-–—:]?\s*\(?(?P<date>\d{4}-\d{2}-\d{2})\)?)?",
    re.IGNORECASE,
)


def match_version_heading(line: str) -> Optional[tuple[int, str, Optional[str]]]:
    """Return (level, version, date) if the line is a version heading."""
    heading = HEADING.match(line.strip())
    if not heading:
        return None

    version = VERSION_HEADING.match(heading.group("text"))
    if not version:
        return None

    return len(heading.group("level")), version.group("version"), version.group("date")


def parse_changelog(text: str, url: str) -> ChangelogEntry:
    """Extract the most recent entry of a Markdown changelog.

    Content runs from the first version heading to the next heading of the
    same or higher level (or the next version heading), capped at
    MAX_CONTENT_LENGTH characters.

    Raises:
        ChangelogParseError: If no version heading is found
    """
    lines = text.splitlines()

    start = None
    for index, line in enumerate(lines):
        found = match_version_heading(line)
        if found:
            start = index
            level, version, entry_date = found
            break

    if start is None:
        raise ChangelogParseError("No version heading found in changelog")

    body: list[str] = []
    for line in lines[start + 1:]:
        heading = HEADING.match(line.strip())
        if heading and (
            len(heading.group("level")) <= level or match_version_heading(line)
        ):
            break
        body.append(line)

    content = "\n".join(body).strip()[:MAX_CONTENT_LENGTH].strip()

    return ChangelogEntry(
        version=version,
        date=entry_date,
        content=content,
        url=url,
    )
