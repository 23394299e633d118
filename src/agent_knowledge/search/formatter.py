"""
Prompt-ready rendering of ranked search results.
"""

from __future__ import annotations

from .ranker import SearchMethod, SearchResult


MAX_CHUNK_CHARS = 500
NO_RESULTS_CONTEXT = "No relevant information found in knowledge base."

_THRESHOLD_METHODS = {"vector_similarity", "hybrid"}


class ResultFormatter:
    """Render ranked results as an LLM context block and a one-line summary."""

    def __init__(self, *, max_chunk_chars: int = MAX_CHUNK_CHARS) -> None:
        self.max_chunk_chars = max_chunk_chars

    def format_context(self, results: list[SearchResult]) -> str:
        if not results:
            return NO_RESULTS_CONTEXT
        return "\n\n".join(
            f"[Chunk {result.chunk_index}] {self._truncate(result.content)}"
            for result in results
        )

    def summarize(
        self,
        results: list[SearchResult],
        *,
        query: str,
        search_method: SearchMethod,
        similarity_threshold: float,
    ) -> str:
        count = len(results)
        if search_method in _THRESHOLD_METHODS:
            if count:
                return (
                    f'Found {count} semantically relevant knowledge entries for "{query}" '
                    f"(similarity threshold: {similarity_threshold})"
                )
            return (
                f'No relevant knowledge found for "{query}" '
                f"above similarity threshold {similarity_threshold}"
            )
        if count:
            return f'Found {count} text-matched knowledge entries for "{query}"'
        return f'No knowledge entries found for "{query}"'

    def _truncate(self, content: str) -> str:
        if len(content) <= self.max_chunk_chars:
            return content
        return content[: self.max_chunk_chars] + "..."
