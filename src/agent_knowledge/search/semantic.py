"""
Vector-based semantic search tier.

Embeds a query and ranks chunks by vector proximity. Similarity is
approximated from result position because the store reports ordering only.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from ..embeddings import EmbeddingProvider, Vector
from ..storage import ChunkStore
from .ranker import VECTOR_SIMILARITY_STEP, ScoredRow, score_in_order


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_store(
    fn: Callable[..., T],
    *,
    timeout: float | None = None,
    **kwargs: Any,
) -> T:
    """Run a blocking store call in a worker thread, optionally bounded."""
    call = asyncio.to_thread(fn, **kwargs)
    if timeout is None:
        return await call
    return await asyncio.wait_for(call, timeout=timeout)


class SemanticSearchEngine:
    """Embed a query and search stored chunk embeddings."""

    def __init__(
        self,
        storage: ChunkStore,
        embedding_provider: EmbeddingProvider,
    ) -> None:
        self.storage = storage
        self.embedding_provider = embedding_provider

    async def embed_query(self, query: str, *, timeout: float | None = None) -> Vector | None:
        """Return the query embedding, or None when the provider cannot help."""
        if not self.embedding_provider.is_configured():
            logger.warning("Embedding provider not configured; vector search unavailable")
            return None
        try:
            if timeout is None:
                return await self.embedding_provider.generate_embedding(query)
            return await asyncio.wait_for(
                self.embedding_provider.generate_embedding(query),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Query embedding timed out after %.2fs", timeout)
            return None

    async def search(
        self,
        *,
        table_id: str,
        query_embedding: Vector,
        limit: int,
        similarity_threshold: float,
        timeout: float | None = None,
    ) -> list[ScoredRow]:
        """Return nearest chunks whose positional similarity meets the threshold."""
        rows = await call_store(
            self.storage.nearest_neighbor,
            timeout=timeout,
            table_id=table_id,
            embedding=query_embedding,
            limit=limit,
        )
        scored = score_in_order(rows, step=VECTOR_SIMILARITY_STEP)
        accepted = [s for s in scored if s.similarity >= similarity_threshold]
        logger.debug(
            "Vector search on %s: %d rows, %d above threshold %.2f",
            table_id,
            len(rows),
            len(accepted),
            similarity_threshold,
        )
        return accepted
