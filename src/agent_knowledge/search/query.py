"""
Tiered retrieval engine: vector similarity, then hybrid, then text fallback.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any

from ..embeddings import EmbeddingProvider, Vector
from ..errors import StorageFatalError
from ..storage import ChunkStore, KnowledgeTable
from .ranker import (
    TEXT_SIMILARITY_STEP,
    ScoredRow,
    SearchMethod,
    SearchResult,
    merge_hybrid,
    rank_results,
    score_in_order,
)
from .semantic import SemanticSearchEngine, call_store


logger = logging.getLogger(__name__)

WORD_MATCH_LIMIT = 3
MIN_WORD_LENGTH = 3


@dataclass(frozen=True)
class SearchOutcome:
    """Ranked results and the tier that produced them."""

    results: list[SearchResult]
    search_method: SearchMethod


class _Budget:
    """Wall-clock budget shared by the tiers of one search."""

    def __init__(self, seconds: float | None) -> None:
        self._loop = asyncio.get_running_loop()
        self._expires_at = None if seconds is None else self._loop.time() + seconds

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._loop.time())

    def embedding_share(self) -> float | None:
        remaining = self.remaining()
        return None if remaining is None else remaining / 2


class RetrievalEngine:
    """Answer a query against one knowledge table, degrading tier by tier."""

    def __init__(self, store: ChunkStore, embedding_provider: EmbeddingProvider) -> None:
        self.store = store
        self.embedding_provider = embedding_provider
        self.semantic = SemanticSearchEngine(store, embedding_provider)

    async def search(
        self,
        table: KnowledgeTable,
        query: str,
        *,
        top_k: int = 10,
        similarity_threshold: float = 0.5,
        deadline: float | None = None,
    ) -> SearchOutcome:
        if top_k < 1:
            raise ValueError("top_k must be >= 1")

        budget = _Budget(deadline)
        embedding = await self.semantic.embed_query(query, timeout=budget.embedding_share())

        if embedding is not None:
            try:
                return await self._vector_or_hybrid(
                    table,
                    query,
                    embedding,
                    top_k=top_k,
                    similarity_threshold=similarity_threshold,
                    budget=budget,
                )
            except asyncio.TimeoutError:
                logger.warning("Hybrid search timed out for table %s; using text fallback", table.id)
            except Exception as exc:
                logger.warning(
                    "Hybrid search failed for table %s (%s); using text fallback",
                    table.id,
                    exc,
                )
        else:
            logger.info("No query embedding for table %s; using text fallback", table.id)

        return await self._text_fallback(table, query, top_k=top_k, budget=budget)

    async def _vector_or_hybrid(
        self,
        table: KnowledgeTable,
        query: str,
        embedding: Vector,
        *,
        top_k: int,
        similarity_threshold: float,
        budget: _Budget,
    ) -> SearchOutcome:
        try:
            vector_hits = await self.semantic.search(
                table_id=table.id,
                query_embedding=embedding,
                limit=top_k * 2,
                similarity_threshold=similarity_threshold,
                timeout=budget.remaining(),
            )
        except asyncio.TimeoutError:
            logger.warning("Vector search timed out for table %s; trying hybrid", table.id)
            vector_hits = []
        except Exception as exc:
            logger.warning("Vector search failed for table %s (%s); trying hybrid", table.id, exc)
            vector_hits = []

        if vector_hits:
            return SearchOutcome(
                results=rank_results(vector_hits, search_method="vector_similarity", limit=top_k),
                search_method="vector_similarity",
            )

        merged = await self._hybrid(table, query, embedding, top_k=top_k, budget=budget)
        return SearchOutcome(
            results=rank_results(merged, search_method="hybrid", limit=top_k),
            search_method="hybrid",
        )

    async def _hybrid(
        self,
        table: KnowledgeTable,
        query: str,
        embedding: Vector,
        *,
        top_k: int,
        budget: _Budget,
    ) -> list[ScoredRow]:
        side_limit = math.ceil(top_k / 2)
        timeout = budget.remaining()
        vector_rows, text_rows = await asyncio.gather(
            call_store(
                self.store.nearest_neighbor,
                timeout=timeout,
                table_id=table.id,
                embedding=embedding,
                limit=side_limit,
            ),
            call_store(
                self.store.substring_match,
                timeout=timeout,
                table_id=table.id,
                pattern=query,
                limit=side_limit,
            ),
            return_exceptions=True,
        )
        for outcome in (vector_rows, text_rows):
            if isinstance(outcome, BaseException):
                raise outcome

        merged = merge_hybrid(vector_rows, text_rows)
        logger.debug(
            "Hybrid search on %s: %d vector + %d text rows -> %d merged",
            table.id,
            len(vector_rows),
            len(text_rows),
            len(merged),
        )
        return merged

    async def _text_fallback(
        self,
        table: KnowledgeTable,
        query: str,
        *,
        top_k: int,
        budget: _Budget,
    ) -> SearchOutcome:
        try:
            rows = await call_store(
                self.store.substring_match,
                timeout=budget.remaining(),
                table_id=table.id,
                pattern=query,
                limit=top_k * 2,
            )
            if not rows:
                rows = await self._word_matches(table, query, budget=budget)
        except asyncio.TimeoutError as exc:
            logger.error("Text fallback timed out for table %s", table.id)
            raise StorageFatalError("Text search exceeded the search deadline") from exc
        except Exception as exc:
            logger.error("Text fallback failed for table %s: %s", table.id, exc)
            raise StorageFatalError(f"Text search failed: {exc}") from exc

        scored = score_in_order(rows, step=TEXT_SIMILARITY_STEP)
        return SearchOutcome(
            results=rank_results(scored, search_method="text_fallback", limit=top_k),
            search_method="text_fallback",
        )

    async def _word_matches(
        self,
        table: KnowledgeTable,
        query: str,
        *,
        budget: _Budget,
    ) -> list[dict[str, Any]]:
        """Union of per-word substring matches, deduplicated in word order."""
        words = [word for word in query.lower().split() if len(word) >= MIN_WORD_LENGTH]
        if not words:
            return []

        timeout = budget.remaining()
        per_word = await asyncio.gather(
            *(
                call_store(
                    self.store.substring_match,
                    timeout=timeout,
                    table_id=table.id,
                    pattern=word,
                    limit=WORD_MATCH_LIMIT,
                )
                for word in words
            )
        )
        seen: set[str] = set()
        union: list[dict[str, Any]] = []
        for rows in per_word:
            for row in rows:
                chunk_id = str(row["id"])
                if chunk_id not in seen:
                    seen.add(chunk_id)
                    union.append(row)
        return union
