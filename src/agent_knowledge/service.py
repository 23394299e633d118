"""
Caller-facing knowledge operations.

Each operation returns a response dict. Only ``KnowledgeError`` subclasses are
turned into ``{"success": False, ...}`` responses; anything else propagates.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pydantic import ValidationError

from .config import RetrievalSettings
from .embeddings import EmbeddingProvider
from .errors import ConfigurationError, KnowledgeError, StorageFatalError
from .models import KnowledgeQuery
from .search import ResultFormatter, RetrievalEngine, TableResolver
from .search.semantic import call_store
from .storage import ChunkStore, KnowledgeTable, TableRepository


logger = logging.getLogger(__name__)

CONTENT_SEARCH_LIMIT = 500
CHUNK_ROWS_LIMIT = 100

Response = dict[str, Any]
RequestLike = KnowledgeQuery | Mapping[str, Any]


def _parse_request(request: RequestLike) -> KnowledgeQuery:
    if isinstance(request, KnowledgeQuery):
        return request
    try:
        return KnowledgeQuery.model_validate(dict(request))
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'request'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigurationError(f"Invalid knowledge request: {problems}") from exc


class KnowledgeService:
    """Resolve a table and answer search, browse and inspection requests."""

    def __init__(
        self,
        store: ChunkStore,
        *,
        embedding_provider: EmbeddingProvider,
        repository: TableRepository | None = None,
        formatter: ResultFormatter | None = None,
        settings: RetrievalSettings | None = None,
    ) -> None:
        self.store = store
        self.resolver = TableResolver(repository if repository is not None else store)
        self.engine = RetrievalEngine(store, embedding_provider)
        self.formatter = formatter or ResultFormatter()
        self.settings = settings or RetrievalSettings()

    async def search(self, request: RequestLike) -> Response:
        """Answer a query request, or browse the table when no query is given."""

        async def handler() -> Response:
            parsed = _parse_request(request)
            table = await self._resolve(parsed)
            query = parsed.normalized_query
            if query is None:
                return await self._browse(table, parsed)
            return await self._query(table, parsed, query)

        return await self._respond("search", handler)

    async def search_content(
        self,
        request: RequestLike,
        *,
        limit: int = CONTENT_SEARCH_LIMIT,
    ) -> Response:
        """Find every chunk index whose content contains the query phrase."""

        async def handler() -> Response:
            parsed = _parse_request(request)
            query = parsed.normalized_query
            if query is None:
                raise ConfigurationError("query is required for content search")
            if limit < 1:
                raise ConfigurationError("limit must be >= 1")
            table = await self._resolve(parsed)
            rows = await self._read(
                self.store.substring_match,
                table_id=table.id,
                pattern=query,
                limit=limit,
                order_by="chunk_index",
            )
            chunk_indexes = sorted({int(row["chunk_index"]) for row in rows})
            return {
                "success": True,
                "table": table.summary(),
                "query": query,
                "chunk_indexes": chunk_indexes,
                "rows": rows,
            }

        return await self._respond("search_content", handler)

    async def get_chunk(
        self,
        request: RequestLike,
        chunk_index: int,
        *,
        limit: int = CHUNK_ROWS_LIMIT,
    ) -> Response:
        async def handler() -> Response:
            parsed = _parse_request(request)
            if chunk_index < 0:
                raise ConfigurationError("chunk_index must be >= 0")
            if limit < 1:
                raise ConfigurationError("limit must be >= 1")
            table = await self._resolve(parsed)
            rows = await self._read(
                self.store.chunk_rows,
                table_id=table.id,
                chunk_index=chunk_index,
                limit=limit,
            )
            return {
                "success": True,
                "table": table.summary(),
                "chunk_index": chunk_index,
                "rows": rows,
            }

        return await self._respond("get_chunk", handler)

    async def inspect_table(self, request: RequestLike) -> Response:
        async def handler() -> Response:
            parsed = _parse_request(request)
            table = await self._resolve(parsed)
            stats = await self._read(self.store.table_stats, table_id=table.id)
            return {"success": True, "table": table.detail(), "stats": stats}

        return await self._respond("inspect_table", handler)

    async def _respond(
        self,
        operation: str,
        handler: Callable[[], Awaitable[Response]],
    ) -> Response:
        started = time.perf_counter()
        try:
            response = await handler()
        except KnowledgeError as exc:
            logger.warning("%s failed [%s]: %s", operation, exc.code, exc.message)
            return exc.to_response()
        logger.info(
            "%s completed in %.1fms (%s)",
            operation,
            (time.perf_counter() - started) * 1000,
            response.get("search_method", "ok"),
        )
        return response

    async def _resolve(self, request: KnowledgeQuery) -> KnowledgeTable:
        return await asyncio.to_thread(
            self.resolver.resolve,
            request.agent_id,
            request.tenant_id,
            table_id=request.table_id,
            table_name=request.table_name,
        )

    async def _read(self, fn: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return await call_store(fn, **kwargs)
        except Exception as exc:
            logger.error("Store read failed: %s", exc)
            raise StorageFatalError(f"Knowledge store read failed: {exc}") from exc

    async def _query(self, table: KnowledgeTable, request: KnowledgeQuery, query: str) -> Response:
        top_k = request.top_k or self.settings.top_k
        threshold = (
            request.similarity_threshold
            if request.similarity_threshold is not None
            else self.settings.similarity_threshold
        )
        outcome = await self.engine.search(
            table,
            query,
            top_k=top_k,
            similarity_threshold=threshold,
            deadline=request.deadline,
        )
        return {
            "success": True,
            "table": table.summary(),
            "query": query,
            "top_k": top_k,
            "similarity_threshold": threshold,
            "results": [result.to_dict() for result in outcome.results],
            "total_results": len(outcome.results),
            "summary": self.formatter.summarize(
                outcome.results,
                query=query,
                search_method=outcome.search_method,
                similarity_threshold=threshold,
            ),
            "formatted_context": self.formatter.format_context(outcome.results),
            "search_method": outcome.search_method,
        }

    async def _browse(self, table: KnowledgeTable, request: KnowledgeQuery) -> Response:
        limit = request.limit or self.settings.page_size
        rows, total = await self._read(
            self.store.paginate,
            table_id=table.id,
            page=request.page,
            limit=limit,
        )
        return {
            "success": True,
            "table": table.detail(),
            "data": rows,
            "pagination": {
                "page": request.page,
                "limit": limit,
                "total_count": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
            "search_method": "browse",
        }
