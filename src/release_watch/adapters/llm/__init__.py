"""LLM adapters."""

from release_watch.adapters.llm.claude_client import ClaudeAnalyzer

__all__ = ["ClaudeAnalyzer"]
