"""Read-through cache around the release analysis backend."""

import hashlib
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog
import yaml

from release_watch.core.entities import AnalysisResult, analysis_from_dict
from release_watch.core.exceptions import NonRetryableError
from release_watch.core.interfaces import AnalysisStore, ReleaseAnalyzer
from release_watch.core.journal import StepRunner
from release_watch.core.retry import ANALYSIS_POLICY, STATE_STORE_POLICY, RetryPolicy

logger = structlog.get_logger(__name__)

MIN_BODY_LENGTH = 20
MAX_INPUT_LENGTH = 6000


def _encode(analysis: Optional[AnalysisResult]) -> Optional[dict]:
    return analysis.to_dict() if analysis else None


class FileAnalysisStore(AnalysisStore):
    """One YAML document per (repository, tag) under ``cache_dir``."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = cache_dir
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    async def get(self, repository: str, tag: str) -> Optional[AnalysisResult]:
        path = self._get_path(repository, tag)
        if not path.exists():
            return None

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        try:
            return analysis_from_dict(data.get("analysis"))
        except ValueError:
            logger.warning("analysis_cache_entry_invalid", path=str(path))
            return None

    async def set(self, repository: str, tag: str, analysis: AnalysisResult) -> None:
        path = self._get_path(repository, tag)
        path.parent.mkdir(parents=True, exist_ok=True)

        document = {
            "repository": repository,
            "tag": tag,
            "cached_at": datetime.now(timezone.utc).isoformat(),
            "analysis": analysis.to_dict(),
        }
        tmp_path = path.with_suffix(".yaml.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(document, f, allow_unicode=True, default_flow_style=False, sort_keys=False)
        os.replace(tmp_path, path)

    def _get_path(self, repository: str, tag: str) -> Path:
        safe_repo = re.sub(r"[^\w.-]", "-", repository.replace("/", "__"))
        safe_tag = re.sub(r"[^\w.-]", "-", tag)[:60]
        # Tags that sanitize alike stay apart
        tag_hash = hashlib.md5(f"{repository}@{tag}".encode()).hexdigest()[:8]
        return self.cache_dir / safe_repo / f"{safe_tag}_{tag_hash}.yaml"


class AnalysisCache:
    """Share one analysis per (repository, tag) across all subscribers.

    Lookups and computation both degrade to ``None``: a missing analysis means
    the notification carries the raw release notes instead. Failures are
    never cached, so the next caller or run tries again.
    """

    def __init__(
        self,
        store: AnalysisStore,
        analyzer: Optional[ReleaseAnalyzer],
        store_policy: RetryPolicy = STATE_STORE_POLICY,
        analysis_policy: RetryPolicy = ANALYSIS_POLICY,
    ) -> None:
        self.store = store
        self.analyzer = analyzer
        self.store_policy = store_policy
        self.analysis_policy = analysis_policy

    async def resolve(
        self,
        repository: str,
        tag: str,
        title: Optional[str],
        body: Optional[str],
        steps: Optional[StepRunner] = None,
    ) -> Optional[AnalysisResult]:
        """Return the cached analysis or compute and cache it.

        Args:
            repository: ``owner/name`` key
            tag: Release tag or changelog version
            title: Display name of the release
            body: Release notes
            steps: Step runner of the calling workflow run
        """
        if not body or len(body.strip()) < MIN_BODY_LENGTH:
            return None

        steps = steps or StepRunner()
        release_key = f"{repository}:{tag}"

        try:
            cached = await steps.do(
                f"ai-cache-get:{release_key}",
                self.store_policy,
                lambda: self.store.get(repository, tag),
                encode=_encode,
                decode=analysis_from_dict,
            )
        except Exception as e:
            logger.warning("analysis_cache_read_failed", repository=repository, tag=tag, error=str(e))
            cached = None

        if cached is not None:
            logger.info("analysis_cache_hit", repository=repository, tag=tag)
            return cached

        if self.analyzer is None:
            return None

        try:
            analysis = await steps.do(
                f"ai-analyze:{release_key}",
                self.analysis_policy,
                lambda: self.analyzer.analyze(repository, tag, title, body[:MAX_INPUT_LENGTH]),
                encode=_encode,
                decode=analysis_from_dict,
            )
        except NonRetryableError as e:
            logger.warning(
                "analysis_skipped",
                repository=repository,
                tag=tag,
                error=f"{type(e).__name__}: {e}",
            )
            return None
        except Exception as e:
            logger.error(
                "analysis_failed",
                repository=repository,
                tag=tag,
                error=f"{type(e).__name__}: {e}",
            )
            return None

        if analysis is None:
            return None

        try:
            await steps.do(
                f"ai-cache-set:{release_key}",
                self.store_policy,
                lambda: self.store.set(repository, tag, analysis),
            )
            logger.info("analysis_cached", repository=repository, tag=tag)
        except Exception as e:
            logger.warning("analysis_cache_write_failed", repository=repository, tag=tag, error=str(e))

        return analysis
