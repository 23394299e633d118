"""Tests for the embedding provider."""

from __future__ import annotations

import asyncio
import logging
import os

import pytest
from google.genai.types import ContentEmbedding, EmbedContentResponse

from agent_knowledge.config import EmbeddingConfig
from agent_knowledge.embeddings import EmbeddingProvider, ProviderFamily, _DECODERS

from conftest import FakeAsyncModels, FakeGenAIClient


# ---------------------------------------------------------------------------
# Single embeddings
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_embedding_uses_query_task_type(make_provider) -> None:
    models = FakeAsyncModels(vectors={"hello": [0.1, 0.2, 0.3, 0.4]})
    provider = make_provider(models)

    vector = await provider.generate_embedding("  hello  ")

    assert vector == [0.1, 0.2, 0.3, 0.4]
    call = models.calls[0]
    assert call["contents"] == ["hello"]
    assert call["model"] == "gemini-embedding-001"
    assert call["config"] == {"task_type": "RETRIEVAL_QUERY", "output_dimensionality": 4}


@pytest.mark.asyncio
async def test_unconfigured_provider_returns_none_without_calling(make_provider) -> None:
    models = FakeAsyncModels()
    provider = make_provider(models, api_key=None)

    assert provider.is_configured() is False
    assert await provider.generate_embedding("anything") is None
    assert models.calls == []


@pytest.mark.asyncio
async def test_blank_text_is_not_embedded(make_provider) -> None:
    models = FakeAsyncModels()
    provider = make_provider(models)

    assert await provider.generate_embedding("   ") is None
    assert models.calls == []


@pytest.mark.asyncio
async def test_provider_failure_becomes_none(make_provider, caplog) -> None:
    provider = make_provider(FakeAsyncModels(fail_on={"boom"}))

    with caplog.at_level(logging.ERROR, logger="agent_knowledge.embeddings"):
        assert await provider.generate_embedding("boom") is None

    assert "Embedding request failed" in caplog.text


@pytest.mark.asyncio
async def test_dimension_mismatch_is_logged_and_vector_kept(make_provider, caplog) -> None:
    provider = make_provider(FakeAsyncModels(vectors={"short": [1.0, 2.0]}))

    with caplog.at_level(logging.WARNING, logger="agent_knowledge.embeddings"):
        vector = await provider.generate_embedding("short")

    assert vector == [1.0, 2.0]
    assert "dimension mismatch" in caplog.text


@pytest.mark.asyncio
async def test_malformed_response_becomes_none(make_provider) -> None:
    class _EmptyModels(FakeAsyncModels):
        async def embed_content(self, *, model, contents, config):
            return {"unexpected": True}

    provider = make_provider(_EmptyModels())

    assert await provider.generate_embedding("hello") is None


def test_decoders_cover_every_family() -> None:
    assert set(_DECODERS) == set(ProviderFamily)
    assert _DECODERS[ProviderFamily.GEMINI]({"embeddings": [{"values": [1, 2]}]}) == [1.0, 2.0]
    assert _DECODERS[ProviderFamily.TITAN]({"embedding": [0.5, 0.25]}) == [0.5, 0.25]
    assert _DECODERS[ProviderFamily.COHERE]({"embeddings": [[3, 4]]}) == [3.0, 4.0]
    assert _DECODERS[ProviderFamily.COHERE]({"embeddings": {"float": [[5, 6]]}}) == [5.0, 6.0]
    assert _DECODERS[ProviderFamily.OPENAI]({"data": [{"embedding": [7, 8]}]}) == [7.0, 8.0]
    assert _DECODERS[ProviderFamily.TITAN]({"embedding": ["x"]}) is None


@pytest.mark.asyncio
async def test_titan_family_decodes_mapping_responses() -> None:
    class _TitanModels(FakeAsyncModels):
        async def embed_content(self, *, model, contents, config):
            return {"embedding": [0.0, 1.0, 0.0, 1.0], "inputTextTokenCount": 3}

    config = EmbeddingConfig(api_key="k", dimensions=4, family="titan")
    provider = EmbeddingProvider(config, client=FakeGenAIClient(_TitanModels()))

    assert provider.family is ProviderFamily.TITAN
    assert await provider.generate_embedding("hi") == [0.0, 1.0, 0.0, 1.0]


def test_unknown_family_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown embedding provider family"):
        EmbeddingProvider(EmbeddingConfig(api_key="k", family="word2vec"))


@pytest.mark.parametrize("family", ["titan", "cohere", "openai"])
def test_non_gemini_family_needs_injected_client(family) -> None:
    with pytest.raises(ValueError, match="needs an injected client"):
        EmbeddingProvider(EmbeddingConfig(api_key="k", family=family))


def test_gemini_family_without_credentials_builds_no_client() -> None:
    provider = EmbeddingProvider(EmbeddingConfig(api_key=None))

    assert provider.family is ProviderFamily.GEMINI
    assert provider.is_configured() is False


@pytest.mark.asyncio
async def test_gemini_family_decodes_sdk_response() -> None:
    class _SdkModels(FakeAsyncModels):
        async def embed_content(self, *, model, contents, config):
            return EmbedContentResponse(embeddings=[ContentEmbedding(values=[0.1, 0.2, 0.3, 0.4])])

    config = EmbeddingConfig(api_key="k", dimensions=4)
    provider = EmbeddingProvider(config, client=FakeGenAIClient(_SdkModels()))

    assert await provider.generate_embedding("hello") == [0.1, 0.2, 0.3, 0.4]


def test_config_from_env(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_API_KEY", "secret")
    monkeypatch.setenv("AGENT_KNOWLEDGE_EMBEDDING_MODEL", "custom-model-001")
    monkeypatch.setenv("AGENT_KNOWLEDGE_EMBEDDING_DIM", "256")
    monkeypatch.setenv("AGENT_KNOWLEDGE_EMBEDDING_FAMILY", "OpenAI")

    config = EmbeddingConfig.from_env()

    assert config.api_key == "secret"
    assert config.model == "custom-model-001"
    assert config.dimensions == 256
    assert config.family == "openai"


def test_describe_hides_credentials(make_provider) -> None:
    described = make_provider().describe()

    assert described == {
        "model": "gemini-embedding-001",
        "family": "gemini",
        "dimensions": 4,
        "has_credentials": True,
    }


# ---------------------------------------------------------------------------
# Batch embeddings
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_batch_preserves_order_and_bounds_concurrency(make_provider) -> None:
    texts = [f"text number {i:02d}" + "x" * i for i in range(12)]
    models = FakeAsyncModels(delay=0.01)
    provider = make_provider(models)

    vectors = await provider.generate_embeddings_batch(texts, batch_size=5)

    assert len(vectors) == 12
    assert [v[0] for v in vectors] == [float(len(t)) for t in texts]
    assert models.peak_in_flight <= 5
    assert models.peak_in_flight == 5
    assert all(call["config"]["task_type"] == "RETRIEVAL_DOCUMENT" for call in models.calls)


@pytest.mark.asyncio
async def test_batch_starts_next_chunk_after_previous_finishes(make_provider) -> None:
    class _RecordingModels(FakeAsyncModels):
        def __init__(self, **kwargs) -> None:
            super().__init__(**kwargs)
            self.events: list[tuple[str, str]] = []

        async def embed_content(self, *, model, contents, config):
            self.events.append(("start", contents[0]))
            result = await super().embed_content(model=model, contents=contents, config=config)
            await asyncio.sleep(0.01)
            self.events.append(("end", contents[0]))
            return result

    vec_a, vec_b, vec_c = [1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0], [0.0, 0.0, 1.0, 0.0]
    models = _RecordingModels(vectors={"a": vec_a, "b": vec_b, "c": vec_c})
    provider = make_provider(models)

    vectors = await provider.generate_embeddings_batch(["a", "b", "c"], batch_size=2)

    assert vectors == [vec_a, vec_b, vec_c]
    assert [call["contents"] for call in models.calls] == [["a"], ["b"], ["c"]]
    c_started = models.events.index(("start", "c"))
    assert c_started > models.events.index(("end", "a"))
    assert c_started > models.events.index(("end", "b"))


@pytest.mark.asyncio
async def test_batch_isolates_single_failures(make_provider) -> None:
    texts = ["alpha", "beta", "gamma", "delta"]
    provider = make_provider(FakeAsyncModels(fail_on={"gamma"}))

    vectors = await provider.generate_embeddings_batch(texts, batch_size=2)

    assert vectors[2] is None
    assert all(v is not None for i, v in enumerate(vectors) if i != 2)


@pytest.mark.asyncio
async def test_batch_chunk_failure_only_nulls_that_chunk(make_provider, monkeypatch) -> None:
    provider = make_provider()
    original = provider._embed_chunk

    async def flaky_chunk(batch, *, offset):
        if offset == 2:
            raise RuntimeError("chunk exploded")
        return await original(batch, offset=offset)

    monkeypatch.setattr(provider, "_embed_chunk", flaky_chunk)

    vectors = await provider.generate_embeddings_batch(["a1", "b2", "c3", "d4", "e5"], batch_size=2)

    assert vectors[2] is None and vectors[3] is None
    assert all(vectors[i] is not None for i in (0, 1, 4))


@pytest.mark.asyncio
async def test_batch_edge_cases(make_provider) -> None:
    provider = make_provider()

    assert await provider.generate_embeddings_batch([]) == []
    with pytest.raises(ValueError, match="batch_size"):
        await provider.generate_embeddings_batch(["a"], batch_size=0)

    unconfigured = make_provider(api_key=None)
    assert await unconfigured.generate_embeddings_batch(["a", "b"]) == [None, None]


@pytest.mark.asyncio
async def test_connection_check(make_provider) -> None:
    models = FakeAsyncModels()
    assert await make_provider(models).test_connection() is True
    assert models.calls[0]["contents"] == ["test connection"]

    assert await make_provider(api_key=None).test_connection() is False
    assert await make_provider(FakeAsyncModels(fail_on={"test connection"})).test_connection() is False


# ---------------------------------------------------------------------------
# Real API integration test (skipped unless GOOGLE_API_KEY is set)
# ---------------------------------------------------------------------------


@pytest.mark.skipif(
    not os.getenv("GOOGLE_API_KEY"),
    reason="GOOGLE_API_KEY not set; skipping real embedding test",
)
@pytest.mark.asyncio
async def test_real_embedding_api() -> None:
    provider = EmbeddingProvider(EmbeddingConfig(api_key=os.environ["GOOGLE_API_KEY"], dimensions=128))

    vectors = await provider.generate_embeddings_batch(
        ["The purchase price is $45 million.", "Risk assessment summary."],
        batch_size=2,
    )

    assert len(vectors) == 2
    assert all(v is not None and len(v) == 128 for v in vectors)
