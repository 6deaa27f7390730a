"""Dedup ledger of the last release delivered per subscriber and repository."""

import asyncio
import hashlib
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml

from release_watch.core.entities import DeliveryRecord


class DeliveryStateStore:
    """Track last-notified tags as individual YAML records.

    Layout: ``{storage_dir}/{subscriber}/{owner}__{name}.yaml``. Writes to
    the same key are serialized; different keys never wait on each other.
    """

    def __init__(self, storage_dir: Path) -> None:
        self.storage_dir = storage_dir
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, subscriber_id: str, repository: str) -> asyncio.Lock:
        key = (subscriber_id, repository)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def get(self, subscriber_id: str, repository: str) -> Optional[str]:
        """Return the last notified tag, or None if never notified."""
        record = await self.get_record(subscriber_id, repository)
        return record.tag if record else None

    async def get_record(self, subscriber_id: str, repository: str) -> Optional[DeliveryRecord]:
        path = self._get_record_path(subscriber_id, repository)
        if not path.exists():
            return None

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        tag = data.get("tag")
        if not tag:
            return None

        return DeliveryRecord(
            subscriber_id=str(data.get("subscriber", subscriber_id)),
            repository=str(data.get("repository", repository)),
            tag=str(tag),
            recorded_at=str(data.get("recorded_at", "")),
        )

    async def set(self, subscriber_id: str, repository: str, tag: str) -> DeliveryRecord:
        """Record ``tag`` as delivered. Call only after a confirmed send."""
        if not tag:
            raise ValueError("Tag cannot be empty")

        record = DeliveryRecord(
            subscriber_id=subscriber_id,
            repository=repository,
            tag=tag,
            recorded_at=datetime.now(timezone.utc).isoformat(),
        )
        path = self._get_record_path(subscriber_id, repository)

        async with self._lock_for(subscriber_id, repository):
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".yaml.tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(
                    {
                        "subscriber": record.subscriber_id,
                        "repository": record.repository,
                        "tag": record.tag,
                        "recorded_at": record.recorded_at,
                    },
                    f,
                    allow_unicode=True,
                    default_flow_style=False,
                    sort_keys=False,
                )
            os.replace(tmp_path, path)

        return record

    def _get_record_path(self, subscriber_id: str, repository: str) -> Path:
        """Get path for a record file."""
        return self.storage_dir / _safe_name(subscriber_id) / f"{_safe_name(repository.replace('/', '__'))}.yaml"


def _safe_name(value: str) -> str:
    """Filesystem-safe, collision-resistant name for an identifier."""
    safe = re.sub(r"[^\w.-]", "-", value)[:80]
    if safe == value and safe not in {".", ".."}:
        return safe
    # Disambiguate identifiers that sanitize to the same string
    return f"{safe}_{hashlib.md5(value.encode()).hexdigest()[:8]}"
