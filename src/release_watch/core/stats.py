"""Aggregate notification counters."""

import asyncio
import os
from pathlib import Path

import yaml

NOTIFICATIONS_SENT = "notifications_sent"
RELEASES_NOTIFIED = "releases_notified"


class StatsCounters:
    """Monotonic named counters persisted to a YAML file.

    All increments go through one lock, so the read-modify-write of the file
    never interleaves and concurrent callers cannot lose updates.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = asyncio.Lock()

    async def increment(self, name: str, amount: int = 1) -> int:
        """Add ``amount`` to counter ``name`` and return the new value."""
        if amount < 1:
            raise ValueError("Counters only move forward")

        async with self._lock:
            counters = self._read()
            value = int(counters.get(name, 0)) + amount
            counters[name] = value
            self._write(counters)
            return value

    async def get(self, name: str) -> int:
        return int(self._read().get(name, 0))

    async def get_all(self) -> dict[str, int]:
        return {name: int(value) for name, value in self._read().items()}

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def _write(self, counters: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(counters, f, default_flow_style=False, sort_keys=True)
        os.replace(tmp_path, self.path)
