"""Storage backends for knowledge retrieval."""

from .base import ChunkStore, KnowledgeTable, TableRepository, VectorChunk
from .duckdb import DuckDBKnowledgeStore

__all__ = [
    "ChunkStore",
    "KnowledgeTable",
    "TableRepository",
    "VectorChunk",
    "DuckDBKnowledgeStore",
]
