"""
AgentKnowledge - tenant-scoped knowledge retrieval for AI agents.

This package resolves a knowledge table, embeds the query with Google GenAI,
and searches DuckDB-stored chunks with a tiered policy (vector similarity,
then hybrid, then text fallback), returning prompt-ready context.

Example usage:
    >>> from agent_knowledge import DuckDBKnowledgeStore, EmbeddingConfig, EmbeddingProvider, KnowledgeService
    >>> store = DuckDBKnowledgeStore("knowledge.duckdb")
    >>> service = KnowledgeService(store, embedding_provider=EmbeddingProvider(EmbeddingConfig.from_env()))
    >>> response = await service.search({"tableName": "docs", "tenantId": "t1", "agentId": "a1", "query": "pricing"})
"""

from .config import EmbeddingConfig, RetrievalSettings, resolve_db_path
from .embeddings import EmbeddingProvider, ProviderFamily
from .errors import ConfigurationError, KnowledgeError, NotFoundError, StorageFatalError
from .models import KnowledgeQuery
from .search import ResultFormatter, RetrievalEngine, SearchOutcome, SearchResult, TableResolver
from .service import KnowledgeService
from .storage import DuckDBKnowledgeStore, KnowledgeTable, VectorChunk

__all__ = [
    # Config
    "EmbeddingConfig",
    "RetrievalSettings",
    "resolve_db_path",
    # Embeddings
    "EmbeddingProvider",
    "ProviderFamily",
    # Errors
    "ConfigurationError",
    "KnowledgeError",
    "NotFoundError",
    "StorageFatalError",
    # Requests and search
    "KnowledgeQuery",
    "ResultFormatter",
    "RetrievalEngine",
    "SearchOutcome",
    "SearchResult",
    "TableResolver",
    # Service and storage
    "KnowledgeService",
    "DuckDBKnowledgeStore",
    "KnowledgeTable",
    "VectorChunk",
]
