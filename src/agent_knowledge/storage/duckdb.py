"""
DuckDB storage backend for knowledge tables and vector chunks.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import duckdb

from .base import KnowledgeTable, SubstringOrder, VectorChunk


DEFAULT_COLUMN_SCHEMA: list[dict[str, Any]] = [
    {"name": "id", "type": "uuid", "required": True, "primaryKey": True},
    {"name": "content", "type": "text", "required": True},
    {"name": "chunk_index", "type": "integer", "required": True},
    {"name": "embedding", "type": "vector", "required": False, "dimensions": 1024},
    {"name": "metadata", "type": "jsonb", "required": False},
    {"name": "created_at", "type": "timestamptz", "required": True},
    {"name": "updated_at", "type": "timestamptz", "required": True},
]

_CHUNK_COLUMNS = """
    c.id,
    c.table_id,
    c.parent_file_id,
    c.chunk_index,
    c.content,
    c.metadata_json,
    c.created_at,
    c.updated_at
"""

_ORDER_BY: dict[str, str] = {
    "recency": "c.created_at DESC, c.chunk_index ASC, c.id ASC",
    "chunk_index": "c.chunk_index ASC, c.created_at ASC, c.id ASC",
}


def _stable_id(prefix: str, value: str) -> str:
    digest = hashlib.sha1(value.encode("utf-8")).hexdigest()
    return f"{prefix}_{digest}"


def _timestamp(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class DuckDBKnowledgeStore:
    """DuckDB-backed persistence for knowledge tables and their chunks."""

    def __init__(
        self,
        db_path: str,
        *,
        read_only: bool = False,
        initialize: bool = True,
    ) -> None:
        if db_path == ":memory:":
            self.db_path = db_path
        else:
            self.db_path = str(Path(db_path).expanduser().resolve())
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.read_only = read_only
        self._conn = duckdb.connect(self.db_path, read_only=read_only)
        if initialize and not read_only:
            self.initialize()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._conn.close()

    def initialize(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS knowledge_tables (
                id VARCHAR PRIMARY KEY,
                tenant_id VARCHAR NOT NULL,
                agent_id VARCHAR NOT NULL,
                name VARCHAR NOT NULL,
                description VARCHAR,
                column_schema VARCHAR NOT NULL DEFAULT '[]',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS vector_chunks (
                id VARCHAR PRIMARY KEY,
                table_id VARCHAR NOT NULL,
                parent_file_id VARCHAR,
                chunk_index INTEGER NOT NULL,
                content VARCHAR NOT NULL,
                embedding FLOAT[],
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                metadata_json VARCHAR NOT NULL DEFAULT '{}',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )

    @contextmanager
    def _read_cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        # One cursor per read; reads run concurrently from worker threads.
        cursor = self._conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    # ------------------------------------------------------------------
    # Table metadata
    # ------------------------------------------------------------------

    def find_by_id(self, table_id: str) -> KnowledgeTable | None:
        with self._read_cursor() as cursor:
            row = cursor.execute(
                """
                SELECT id, tenant_id, agent_id, name, description, column_schema,
                       created_at, updated_at
                FROM knowledge_tables
                WHERE id = ?
                LIMIT 1
                """,
                [table_id],
            ).fetchone()
        if row is None:
            return None
        return self._row_to_table(row)

    def find_by_name_scoped(
        self,
        *,
        agent_id: str,
        tenant_id: str,
        name: str,
    ) -> KnowledgeTable | None:
        with self._read_cursor() as cursor:
            row = cursor.execute(
                """
                SELECT id, tenant_id, agent_id, name, description, column_schema,
                       created_at, updated_at
                FROM knowledge_tables
                WHERE agent_id = ? AND tenant_id = ? AND name = ?
                LIMIT 1
                """,
                [agent_id, tenant_id, name],
            ).fetchone()
        if row is None:
            return None
        return self._row_to_table(row)

    def upsert_table(
        self,
        *,
        tenant_id: str,
        agent_id: str,
        name: str,
        description: str | None = None,
        column_schema: list[dict[str, Any]] | None = None,
        table_id: str | None = None,
    ) -> KnowledgeTable:
        """Create or update a knowledge table. Used by ingestion, not retrieval."""
        resolved_id = table_id or _stable_id("table", f"{tenant_id}:{agent_id}:{name}")
        now = datetime.now()
        self._conn.execute(
            """
            INSERT INTO knowledge_tables (
                id, tenant_id, agent_id, name, description, column_schema, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                description = excluded.description,
                column_schema = excluded.column_schema,
                updated_at = excluded.updated_at
            """,
            [
                resolved_id,
                tenant_id,
                agent_id,
                name,
                description,
                json.dumps(column_schema if column_schema is not None else DEFAULT_COLUMN_SCHEMA),
                now,
                now,
            ],
        )
        table = self.find_by_id(resolved_id)
        if table is None:
            raise RuntimeError(f"Failed to upsert knowledge table: {name}")
        return table

    # ------------------------------------------------------------------
    # Chunk writes (ingestion side)
    # ------------------------------------------------------------------

    def insert_chunks(
        self,
        chunks: list[VectorChunk],
        *,
        created_at: list[datetime | None] | None = None,
    ) -> int:
        """Insert chunk rows. Optional *created_at* pins timestamps per chunk."""
        if not chunks:
            return 0
        now = datetime.now()
        timestamps = created_at or [None] * len(chunks)
        if len(timestamps) != len(chunks):
            raise ValueError("created_at must have one entry per chunk")
        self._conn.executemany(
            """
            INSERT INTO vector_chunks (
                id, table_id, parent_file_id, chunk_index, content, embedding,
                is_active, metadata_json, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    chunk.id,
                    chunk.table_id,
                    chunk.parent_file_id,
                    chunk.chunk_index,
                    chunk.content,
                    chunk.embedding,
                    chunk.is_active,
                    json.dumps(chunk.metadata, sort_keys=True),
                    ts or now,
                    ts or now,
                )
                for chunk, ts in zip(chunks, timestamps)
            ],
        )
        return len(chunks)

    def deactivate_by_parent_file(self, parent_file_id: str) -> int:
        """Soft-delete every active chunk produced from one source file."""
        rows = self._conn.execute(
            """
            UPDATE vector_chunks
            SET is_active = FALSE, updated_at = ?
            WHERE parent_file_id = ? AND is_active = TRUE
            RETURNING id
            """,
            [datetime.now(), parent_file_id],
        ).fetchall()
        return len(rows)

    # ------------------------------------------------------------------
    # Chunk reads
    # ------------------------------------------------------------------

    def nearest_neighbor(
        self,
        *,
        table_id: str,
        embedding: list[float],
        limit: int,
    ) -> list[dict[str, Any]]:
        if not embedding or limit < 1:
            return []
        with self._read_cursor() as cursor:
            rows = cursor.execute(
                f"""
                SELECT {_CHUNK_COLUMNS}
                FROM vector_chunks c
                WHERE c.table_id = ?
                  AND c.is_active = TRUE
                  AND c.embedding IS NOT NULL
                  AND len(c.embedding) = ?
                ORDER BY list_distance(c.embedding, ?::FLOAT[]) ASC,
                         c.chunk_index ASC,
                         c.id ASC
                LIMIT ?
                """,
                [table_id, len(embedding), embedding, limit],
            ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def substring_match(
        self,
        *,
        table_id: str,
        pattern: str,
        limit: int,
        order_by: SubstringOrder = "recency",
    ) -> list[dict[str, Any]]:
        if not pattern.strip() or limit < 1:
            return []
        order_clause = _ORDER_BY.get(order_by)
        if order_clause is None:
            raise ValueError(f"Unsupported substring ordering: {order_by!r}")
        with self._read_cursor() as cursor:
            rows = cursor.execute(
                f"""
                SELECT {_CHUNK_COLUMNS}
                FROM vector_chunks c
                WHERE c.table_id = ?
                  AND c.is_active = TRUE
                  AND contains(lower(c.content), lower(?))
                ORDER BY {order_clause}
                LIMIT ?
                """,
                [table_id, pattern, limit],
            ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def paginate(
        self,
        *,
        table_id: str,
        page: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        if page < 1 or limit < 1:
            raise ValueError(f"Invalid pagination (page={page}, limit={limit})")
        with self._read_cursor() as cursor:
            count_row = cursor.execute(
                """
                SELECT COUNT(*)
                FROM vector_chunks
                WHERE table_id = ? AND is_active = TRUE
                """,
                [table_id],
            ).fetchone()
            rows = cursor.execute(
                f"""
                SELECT {_CHUNK_COLUMNS}
                FROM vector_chunks c
                WHERE c.table_id = ? AND c.is_active = TRUE
                ORDER BY {_ORDER_BY["recency"]}
                LIMIT ? OFFSET ?
                """,
                [table_id, limit, (page - 1) * limit],
            ).fetchall()
        total = int(count_row[0]) if count_row else 0
        return [self._row_to_chunk(row) for row in rows], total

    def chunk_rows(
        self,
        *,
        table_id: str,
        chunk_index: int,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        with self._read_cursor() as cursor:
            rows = cursor.execute(
                f"""
                SELECT {_CHUNK_COLUMNS}
                FROM vector_chunks c
                WHERE c.table_id = ? AND c.is_active = TRUE AND c.chunk_index = ?
                ORDER BY c.created_at ASC, c.id ASC
                LIMIT ?
                """,
                [table_id, chunk_index, limit],
            ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def table_stats(self, *, table_id: str) -> dict[str, Any]:
        with self._read_cursor() as cursor:
            row = cursor.execute(
                """
                SELECT
                    COUNT(*),
                    COUNT(DISTINCT chunk_index),
                    COUNT(embedding),
                    max(updated_at)
                FROM vector_chunks
                WHERE table_id = ? AND is_active = TRUE
                """,
                [table_id],
            ).fetchone()
        if row is None:
            return {
                "total_vectors": 0,
                "distinct_chunks": 0,
                "embedded_vectors": 0,
                "last_updated_at": None,
            }
        return {
            "total_vectors": int(row[0]),
            "distinct_chunks": int(row[1]),
            "embedded_vectors": int(row[2]),
            "last_updated_at": _timestamp(row[3]),
        }

    @staticmethod
    def make_chunk_id(table_id: str, parent_file_id: str | None, chunk_index: int) -> str:
        return _stable_id("chunk", f"{table_id}:{parent_file_id or ''}:{chunk_index}")

    @staticmethod
    def _row_to_table(row: tuple[Any, ...]) -> KnowledgeTable:
        return KnowledgeTable(
            id=str(row[0]),
            tenant_id=str(row[1]),
            agent_id=str(row[2]),
            name=str(row[3]),
            description=str(row[4]) if row[4] is not None else None,
            column_schema=json.loads(str(row[5])),
            created_at=_timestamp(row[6]),
            updated_at=_timestamp(row[7]),
        )

    @staticmethod
    def _row_to_chunk(row: tuple[Any, ...]) -> dict[str, Any]:
        return {
            "id": str(row[0]),
            "table_id": str(row[1]),
            "parent_file_id": str(row[2]) if row[2] is not None else None,
            "chunk_index": int(row[3]),
            "content": str(row[4]),
            "metadata": json.loads(str(row[5])),
            "created_at": _timestamp(row[6]),
            "updated_at": _timestamp(row[7]),
        }
