"""Claude API client for release analysis."""

import asyncio
import json
import re
from typing import Optional

import httpx
import structlog

from release_watch.adapters.http_errors import raise_for_transient
from release_watch.config import Settings
from release_watch.core import AnalysisResult, ReleaseAnalyzer
from release_watch.core.exceptions import (
    AnalysisError,
    AnalysisParseError,
    ConfigurationError,
)

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = """You are a release notes analyzer. Given a GitHub release, you must analyze and categorize it.

Category rules:
- "major": Version X.0.0 or significant new features
- "minor": Version X.Y.0 or new features without breaking changes
- "patch": Version X.Y.Z or bug fixes only
- "security": Contains security fixes, CVE mentions, vulnerability patches
- "breaking": Contains breaking changes regardless of version
- "unknown": Cannot determine

Respond with a single JSON object and nothing else:
{"summary": "<2-3 sentence summary of the most important changes>",
 "category": "<major|minor|patch|security|breaking|unknown>",
 "hasBreakingChanges": <true|false>,
 "highlights": ["<2-3 brief key highlights>"]}"""

USER_PROMPT = """Analyze this GitHub release:

Repository: {repository}
Tag: {tag}
Release Name: {title}

Release Notes:
{body}"""


class ClaudeAnalyzer(ReleaseAnalyzer):
    """Claude API analyzer implementation.

    Each call makes a single request; retries belong to the caller's
    analysis retry policy. Rate limits and server errors raise
    TransientError so that policy can back off.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.api_key = settings.anthropic_api_key
        self.model = settings.claude.model
        self.max_tokens = settings.claude.max_tokens
        self.temperature = settings.claude.temperature
        self.request_delay = settings.claude.request_delay
        self.request_timeout = settings.claude.request_timeout
        self.base_url = "https://api.anthropic.com/v1"
        self._last_request_time = 0.0
        self._rate_lock = asyncio.Lock()

    async def analyze(
        self, repository: str, tag: str, title: Optional[str], body: str
    ) -> AnalysisResult:
        """Summarize and categorize a release."""
        prompt = USER_PROMPT.format(
            repository=repository,
            tag=tag,
            title=title or tag,
            body=body,
        )

        response = await self._call_api(prompt=prompt, system=SYSTEM_PROMPT)

        json_text = self._extract_json(response)

        try:
            return AnalysisResult.from_raw(json.loads(json_text))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning(
                "analysis_output_invalid",
                repository=repository,
                tag=tag,
                response_preview=response[:200],
                error=f"{type(e).__name__}: {e}",
            )
            raise AnalysisParseError(f"Unparseable analysis for {repository}@{tag}: {e}") from e

    async def _call_api(self, prompt: str, system: str) -> str:
        """Call Claude API once, enforcing a minimum delay between requests."""
        if not self.api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set")

        # Rate limiting: ensure minimum delay between requests
        async with self._rate_lock:
            loop = asyncio.get_running_loop()
            time_since_last_request = loop.time() - self._last_request_time
            if time_since_last_request < self.request_delay:
                await asyncio.sleep(self.request_delay - time_since_last_request)
            self._last_request_time = loop.time()

        async with httpx.AsyncClient(timeout=self.request_timeout) as client:
            response = await client.post(
                f"{self.base_url}/messages",
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={
                    "model": self.model,
                    "max_tokens": self.max_tokens,
                    "temperature": self.temperature,
                    "system": system,
                    "messages": [
                        {"role": "user", "content": prompt}
                    ],
                },
            )

        if response.status_code == 200:
            data = response.json()
            return data["content"][0]["text"]

        raise_for_transient(response, "Claude API")
        raise AnalysisError(f"Claude API returned HTTP {response.status_code}")

    def _fix_json(self, text: str) -> str:
        """Try to fix common JSON issues."""
        # Remove trailing commas before } or ]
        text = re.sub(r',(\s*[}\]])', r'\1', text)
        return text

    def _extract_json(self, text: str) -> str:
        """Extract JSON from markdown code block or raw text."""
        # Strategy 1: JSON in a markdown code block
        code_block_match = re.search(r'```(?:json)?\s*\n(.*?)\n```', text, re.DOTALL)
        if code_block_match:
            candidate = code_block_match.group(1).strip()
            return self._fix_json(candidate)

        # Strategy 2: JSON object carrying the required summary field
        json_with_fields = re.search(
            r'\{[^{}]*"summary"\s*:.*?\}',
            text,
            re.DOTALL
        )
        if json_with_fields:
            candidate = self._fix_json(json_with_fields.group(0))
            try:
                json.loads(candidate)
                return candidate
            except json.JSONDecodeError:
                pass

        # Strategy 3: any JSON object
        json_object_match = re.search(r'\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}', text, re.DOTALL)
        if json_object_match:
            candidate = self._fix_json(json_object_match.group(0))
            try:
                json.loads(candidate)
                return candidate
            except json.JSONDecodeError:
                pass

        # Strategy 4: return as is (last resort)
        return self._fix_json(text.strip())
