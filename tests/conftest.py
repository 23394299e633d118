from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import pytest

from agent_knowledge.config import EmbeddingConfig
from agent_knowledge.embeddings import EmbeddingProvider
from agent_knowledge.storage import DuckDBKnowledgeStore, KnowledgeTable, VectorChunk


TENANT_ID = "tenantA12345"
OTHER_TENANT_ID = "tenantB99999"
AGENT_ID = "whatsappagent"
TABLE_ID = "4c8b0c44-102c-4c1e-8857-33d5ff90e649"
OTHER_TABLE_ID = "9d1e7a52-3f0b-4a8e-b6c1-2e5f8a7d4c10"
TABLE_NAME = "mywebsitedata"

QUERY_VECTOR = [1.0, 0.0, 0.0, 0.0]


@dataclass
class FakeEmbedding:
    values: list[float]


@dataclass
class FakeEmbedResult:
    embeddings: list[FakeEmbedding]


class FakeAsyncModels:
    """Async stand-in for ``client.aio.models`` that records every call."""

    def __init__(
        self,
        *,
        dim: int = 4,
        vectors: dict[str, list[float]] | None = None,
        fail_on: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.dim = dim
        self.vectors = vectors or {}
        self.fail_on = fail_on or set()
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def embed_content(
        self, *, model: str, contents: list[str], config: dict
    ) -> FakeEmbedResult:
        self.calls.append({"model": model, "contents": contents, "config": config})
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            text = contents[0]
            if text in self.fail_on:
                raise RuntimeError(f"provider rejected {text!r}")
            vector = self.vectors.get(text)
            if vector is None:
                vector = [float(len(text))] + [0.5] * (self.dim - 1)
            return FakeEmbedResult(embeddings=[FakeEmbedding(values=vector)])
        finally:
            self.in_flight -= 1


class FakeAio:
    def __init__(self, models: FakeAsyncModels) -> None:
        self.models = models


class FakeGenAIClient:
    def __init__(self, models: FakeAsyncModels | None = None) -> None:
        self.aio = FakeAio(models or FakeAsyncModels())


@pytest.fixture
def make_provider() -> Callable[..., EmbeddingProvider]:
    def _make(
        models: FakeAsyncModels | None = None,
        *,
        api_key: str | None = "test-key",
        dim: int = 4,
        family: str = "gemini",
    ) -> EmbeddingProvider:
        config = EmbeddingConfig(api_key=api_key, dimensions=dim, family=family)
        return EmbeddingProvider(config, client=FakeGenAIClient(models))

    return _make


@pytest.fixture
def store(tmp_path) -> Iterator[DuckDBKnowledgeStore]:
    knowledge_store = DuckDBKnowledgeStore(str(tmp_path / "knowledge.duckdb"))
    yield knowledge_store
    knowledge_store.close()


def _chunk(
    table_id: str,
    chunk_index: int,
    content: str,
    *,
    embedding: list[float] | None = None,
    parent_file_id: str = "file-site",
    is_active: bool = True,
) -> VectorChunk:
    return VectorChunk(
        id=DuckDBKnowledgeStore.make_chunk_id(table_id, parent_file_id, chunk_index),
        table_id=table_id,
        chunk_index=chunk_index,
        content=content,
        parent_file_id=parent_file_id,
        embedding=embedding,
        is_active=is_active,
        metadata={"source": parent_file_id},
    )


@pytest.fixture
def seeded_store(store: DuckDBKnowledgeStore) -> DuckDBKnowledgeStore:
    """Two tenants; tenant A's table carries embedded, unembedded and inactive chunks."""
    store.upsert_table(
        tenant_id=TENANT_ID,
        agent_id=AGENT_ID,
        name=TABLE_NAME,
        description="Scraped website content",
        table_id=TABLE_ID,
    )
    store.upsert_table(
        tenant_id=OTHER_TENANT_ID,
        agent_id=AGENT_ID,
        name=TABLE_NAME,
        table_id=OTHER_TABLE_ID,
    )
    store.insert_chunks(
        [
            _chunk(
                TABLE_ID,
                0,
                "Welcome to our agency. We offer WhatsApp Business Automation for retail brands.",
                embedding=[1.0, 0.0, 0.0, 0.0],
            ),
            _chunk(
                TABLE_ID,
                1,
                "Services include WhatsApp Business Automation and more.",
                embedding=[0.9, 0.1, 0.0, 0.0],
            ),
            _chunk(
                TABLE_ID,
                2,
                "Pricing starts at 99 dollars per month for small teams.",
                embedding=[0.0, 1.0, 0.0, 0.0],
            ),
            _chunk(
                TABLE_ID,
                3,
                "Contact our support team by email any day of the week.",
            ),
            _chunk(
                TABLE_ID,
                4,
                "Legacy WhatsApp Business Automation pricing sheet.",
                embedding=[1.0, 0.0, 0.0, 0.0],
                parent_file_id="file-legacy",
                is_active=False,
            ),
            _chunk(
                OTHER_TABLE_ID,
                0,
                "Tenant B internal WhatsApp Business Automation playbook.",
                embedding=[1.0, 0.0, 0.0, 0.0],
                parent_file_id="file-b",
            ),
        ],
        created_at=[
            datetime(2024, 1, 1, 9, 0),
            datetime(2024, 1, 2, 9, 0),
            datetime(2024, 1, 3, 9, 0),
            datetime(2024, 1, 4, 9, 0),
            datetime(2024, 1, 5, 9, 0),
            datetime(2024, 1, 6, 9, 0),
        ],
    )
    return store


@pytest.fixture
def table(seeded_store: DuckDBKnowledgeStore) -> KnowledgeTable:
    resolved = seeded_store.find_by_id(TABLE_ID)
    assert resolved is not None
    return resolved
