"""
Ranking helpers for scoring and merging retrieval result sets.

The store exposes ordering only, never a numeric distance, so every score
here is synthetic: a decreasing function of a row's position in its source.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal


SearchMethod = Literal["vector_similarity", "hybrid", "text_fallback"]

VECTOR_SIMILARITY_STEP = 0.05
HYBRID_VECTOR_STEP = 0.1
HYBRID_TEXT_BASE = 0.6
HYBRID_TEXT_STEP = 0.05
TEXT_SIMILARITY_STEP = 0.1

_VECTOR_PRIORITY = 1
_TEXT_PRIORITY = 2


@dataclass(frozen=True)
class ScoredRow:
    """A store row with its synthetic similarity, before ranking."""

    row: dict[str, Any]
    similarity: float
    priority: int = _VECTOR_PRIORITY

    @property
    def chunk_id(self) -> str:
        return str(self.row["id"])


@dataclass(frozen=True)
class SearchResult:
    """Ranked chunk returned to callers."""

    id: str
    content: str
    chunk_index: int
    metadata: dict[str, Any]
    similarity: float
    rank: int
    search_method: SearchMethod
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "chunk_index": self.chunk_index,
            "metadata": self.metadata,
            "similarity": self.similarity,
            "rank": self.rank,
            "search_method": self.search_method,
            "created_at": self.created_at,
        }


def positional_similarity(position: int, step: float, *, base: float = 1.0) -> float:
    """Similarity of the row at 0-based *position*, clamped to [0, 1]."""
    return round(min(1.0, max(0.0, base - position * step)), 4)


def score_in_order(
    rows: list[dict[str, Any]],
    *,
    step: float,
    base: float = 1.0,
    priority: int = _VECTOR_PRIORITY,
) -> list[ScoredRow]:
    return [
        ScoredRow(
            row=row,
            similarity=positional_similarity(i, step, base=base),
            priority=priority,
        )
        for i, row in enumerate(rows)
    ]


def merge_hybrid(
    vector_rows: list[dict[str, Any]],
    text_rows: list[dict[str, Any]],
) -> list[ScoredRow]:
    """Merge vector and substring hits by chunk id; vector hits win duplicates."""
    merged: dict[str, ScoredRow] = {}
    for scored in score_in_order(vector_rows, step=HYBRID_VECTOR_STEP):
        merged.setdefault(scored.chunk_id, scored)
    for scored in score_in_order(
        text_rows,
        step=HYBRID_TEXT_STEP,
        base=HYBRID_TEXT_BASE,
        priority=_TEXT_PRIORITY,
    ):
        merged.setdefault(scored.chunk_id, scored)

    return sorted(
        merged.values(),
        key=lambda scored: (
            scored.priority,
            -scored.similarity,
            int(scored.row.get("chunk_index", 0)),
            scored.chunk_id,
        ),
    )


def rank_results(
    candidates: list[ScoredRow],
    *,
    search_method: SearchMethod,
    limit: int,
) -> list[SearchResult]:
    """Truncate to *limit* and assign ranks 1..n.

    Similarity is capped at the previous result's value so it never rises
    with rank, even where merged sources score on different scales.
    """
    results: list[SearchResult] = []
    ceiling = 1.0
    for rank, scored in enumerate(candidates[: max(limit, 0)], start=1):
        similarity = min(scored.similarity, ceiling)
        ceiling = similarity
        row = scored.row
        results.append(
            SearchResult(
                id=str(row["id"]),
                content=str(row.get("content", "")),
                chunk_index=int(row.get("chunk_index", 0)),
                metadata=dict(row.get("metadata") or {}),
                similarity=similarity,
                rank=rank,
                search_method=search_method,
                created_at=row.get("created_at"),
            )
        )
    return results
