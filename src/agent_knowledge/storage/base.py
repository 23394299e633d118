"""
Storage interfaces and data models for knowledge tables and vector chunks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol


SubstringOrder = Literal["recency", "chunk_index"]


@dataclass(frozen=True)
class KnowledgeTable:
    """A named, tenant/agent-scoped collection of indexed chunks."""

    id: str
    tenant_id: str
    agent_id: str
    name: str
    description: str | None = None
    column_schema: list[dict[str, Any]] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    def summary(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}

    def detail(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "columns": self.column_schema,
            "description": self.description,
        }


@dataclass(frozen=True)
class VectorChunk:
    """One unit of indexed text plus its optional embedding."""

    id: str
    table_id: str
    chunk_index: int
    content: str
    parent_file_id: str | None = None
    embedding: list[float] | None = None
    is_active: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


class TableRepository(Protocol):
    """Metadata lookup for knowledge tables. Never returns cross-tenant rows."""

    def find_by_id(self, table_id: str) -> KnowledgeTable | None:
        """Fetch a table by primary key."""

    def find_by_name_scoped(
        self,
        *,
        agent_id: str,
        tenant_id: str,
        name: str,
    ) -> KnowledgeTable | None:
        """Fetch a table by name within one tenant and agent."""


class ChunkStore(Protocol):
    """Read operations over active vector chunks of one table."""

    def nearest_neighbor(
        self,
        *,
        table_id: str,
        embedding: list[float],
        limit: int,
    ) -> list[dict[str, Any]]:
        """Rows ordered by ascending vector distance to *embedding*."""

    def substring_match(
        self,
        *,
        table_id: str,
        pattern: str,
        limit: int,
        order_by: SubstringOrder = "recency",
    ) -> list[dict[str, Any]]:
        """Rows whose content contains *pattern*, case-insensitively."""

    def paginate(
        self,
        *,
        table_id: str,
        page: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """Newest-first page of rows plus the total active row count."""

    def chunk_rows(
        self,
        *,
        table_id: str,
        chunk_index: int,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Rows stored for one chunk index, oldest first."""

    def table_stats(self, *, table_id: str) -> dict[str, Any]:
        """Counts and latest update timestamp for a table."""
