"""Durable step execution backed by an append-only journal."""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from release_watch.core.retry import NO_RETRY, RetryPolicy, retry_call

logger = structlog.get_logger(__name__)

T = TypeVar("T")

COMPLETED_MARKER = "__completed__"


class StepJournal:
    """Record completed steps of one workflow run as JSON lines.

    A step is written only after it finishes, so re-running a crashed run
    skips everything already done and repeats only the unfinished steps.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._entries: dict[str, Any] = {}
        self._lock = asyncio.Lock()
        self._load()

    @classmethod
    def for_run(cls, journal_dir: Path, run_id: str) -> "StepJournal":
        return cls(journal_dir / f"{run_id}.jsonl")

    def _load(self) -> None:
        if not self.path.exists():
            return

        with open(self.path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    # A torn final line from a crash mid-write; the step reruns
                    logger.warning("journal_line_skipped", path=str(self.path), line=line_number)
                    continue
                self._entries[entry["step"]] = entry.get("result")

        logger.info("journal_loaded", path=str(self.path), steps=len(self._entries))

    def has(self, name: str) -> bool:
        return name in self._entries

    def get(self, name: str) -> Any:
        return self._entries[name]

    @property
    def completed(self) -> bool:
        return COMPLETED_MARKER in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def record(self, name: str, result: Any) -> None:
        """Append a completed step."""
        entry = {
            "step": name,
            "result": result,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        line = json.dumps(entry, ensure_ascii=False)

        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
            self._entries[name] = result

    async def mark_completed(self, result: Any) -> None:
        await self.record(COMPLETED_MARKER, result)


def prune_journals(
    journal_dir: Path,
    retention_days: float,
    now: Optional[datetime] = None,
) -> int:
    """Delete completed run journals older than ``retention_days``.

    Unfinished journals are kept so their runs can still be resumed.

    Returns:
        Number of journals deleted
    """
    if not journal_dir.exists():
        return 0

    now = now or datetime.now(timezone.utc)
    cutoff = now.timestamp() - retention_days * 86400

    deleted = 0
    for path in journal_dir.glob("*.jsonl"):
        if path.stat().st_mtime >= cutoff:
            continue
        if not StepJournal(path).completed:
            continue
        path.unlink()
        deleted += 1

    if deleted:
        logger.info("journals_pruned", journal_dir=str(journal_dir), deleted=deleted)
    return deleted


class StepRunner:
    """Run named steps with retries, replaying journaled results."""

    def __init__(
        self,
        journal: Optional[StepJournal] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.journal = journal
        self.sleep = sleep

    async def do(
        self,
        name: str,
        policy: RetryPolicy,
        fn: Callable[[], Awaitable[T]],
        encode: Optional[Callable[[T], Any]] = None,
        decode: Optional[Callable[[Any], T]] = None,
    ) -> T:
        """Run step ``name`` once per run.

        Args:
            name: Step identifier, unique within the run
            policy: Retry policy of the dependency the step calls
            fn: Zero-argument coroutine factory
            encode: Converts the result to JSON-safe data for the journal
            decode: Rebuilds the result from journaled data
        """
        if self.journal is not None and self.journal.has(name):
            logger.debug("step_replayed", step=name)
            stored = self.journal.get(name)
            return decode(stored) if decode else stored

        result = await retry_call(policy or NO_RETRY, fn, name=name, sleep=self.sleep)

        if self.journal is not None:
            await self.journal.record(name, encode(result) if encode else result)

        return result
