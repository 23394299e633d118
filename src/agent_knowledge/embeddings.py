"""
Embedding provider for vector-based knowledge search.

Wraps the Google GenAI embedding API behind an async interface that never
raises on provider failure: every failure becomes ``None`` so callers can
degrade to a weaker search tier. Batch generation runs in consecutive chunks
with concurrency capped at the chunk size.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from google.genai import Client as GenAIClient
from google.genai.types import HttpOptions

from .config import EmbeddingConfig


logger = logging.getLogger(__name__)

_DEFAULT_BATCH_SIZE = 5
_CONNECTION_TEST_TEXT = "test connection"

Vector = list[float]


class ProviderFamily(str, Enum):
    """Known response layouts of embedding providers."""

    GEMINI = "gemini"
    TITAN = "titan"
    COHERE = "cohere"
    OPENAI = "openai"


def _as_vector(value: Any) -> Vector | None:
    if not isinstance(value, (list, tuple)) or not value:
        return None
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value):
        return None
    return [float(v) for v in value]


def _decode_gemini(payload: Mapping[str, Any]) -> Vector | None:
    # {"embeddings": [{"values": [...]}]}
    embeddings = payload.get("embeddings")
    if isinstance(embeddings, list) and embeddings and isinstance(embeddings[0], Mapping):
        return _as_vector(embeddings[0].get("values"))
    return None


def _decode_titan(payload: Mapping[str, Any]) -> Vector | None:
    # {"embedding": [...]}
    return _as_vector(payload.get("embedding"))


def _decode_cohere(payload: Mapping[str, Any]) -> Vector | None:
    # {"embeddings": [[...]]} or {"embeddings": {"float": [[...]]}}
    embeddings = payload.get("embeddings")
    if isinstance(embeddings, Mapping):
        embeddings = embeddings.get("float")
    if isinstance(embeddings, list) and embeddings:
        return _as_vector(embeddings[0])
    return None


def _decode_openai(payload: Mapping[str, Any]) -> Vector | None:
    # {"data": [{"embedding": [...]}]}
    data = payload.get("data")
    if isinstance(data, list) and data and isinstance(data[0], Mapping):
        return _as_vector(data[0].get("embedding"))
    return None


_DECODERS: dict[ProviderFamily, Callable[[Mapping[str, Any]], Vector | None]] = {
    ProviderFamily.GEMINI: _decode_gemini,
    ProviderFamily.TITAN: _decode_titan,
    ProviderFamily.COHERE: _decode_cohere,
    ProviderFamily.OPENAI: _decode_openai,
}


def _response_payload(response: Any) -> Mapping[str, Any] | None:
    """Normalize an SDK response object into a plain mapping."""
    if isinstance(response, Mapping):
        return response
    model_dump = getattr(response, "model_dump", None)
    if callable(model_dump):
        payload = model_dump(exclude_none=True)
        return payload if isinstance(payload, Mapping) else None
    if dataclasses.is_dataclass(response) and not isinstance(response, type):
        return dataclasses.asdict(response)
    return None


class EmbeddingProvider:
    """Generate text embeddings via Google GenAI."""

    def __init__(self, config: EmbeddingConfig, *, client: Any | None = None) -> None:
        try:
            self.family = ProviderFamily(config.family)
        except ValueError:
            known = ", ".join(f.value for f in ProviderFamily)
            raise ValueError(
                f"Unknown embedding provider family {config.family!r}. Known families: {known}"
            ) from None
        self.config = config
        self.model = config.model
        self.dim = config.dimensions

        if client is None and self.family is not ProviderFamily.GEMINI:
            # GenAIClient responses only decode as the gemini family.
            raise ValueError(
                f"Embedding provider family {self.family.value!r} needs an injected client; "
                "the built-in Google GenAI client only serves the 'gemini' family"
            )

        if client is not None:
            self._client = client
        elif config.api_key:
            self._client = GenAIClient(
                api_key=config.api_key,
                http_options=HttpOptions(timeout=int(config.request_timeout * 1000)),
            )
        else:
            self._client = None

    def is_configured(self) -> bool:
        """Return True when credentials are present. Performs no I/O."""
        return bool(self.config.api_key)

    def describe(self) -> dict[str, Any]:
        """Current settings, without secrets."""
        return {
            "model": self.model,
            "family": self.family.value,
            "dimensions": self.dim,
            "has_credentials": self.is_configured(),
        }

    async def generate_embedding(
        self,
        text: str,
        *,
        task_type: str = "RETRIEVAL_QUERY",
    ) -> Vector | None:
        """Embed a single text, returning None on any provider failure."""
        if not self.is_configured() or self._client is None:
            logger.warning("Embedding provider not configured; skipping embedding")
            return None
        cleaned = text.strip()
        if not cleaned:
            logger.debug("Refusing to embed blank text")
            return None

        try:
            response = await self._client.aio.models.embed_content(
                model=self.model,
                contents=[cleaned],
                config={
                    "task_type": task_type,
                    "output_dimensionality": self.dim,
                },
            )
        except Exception as exc:
            logger.error(
                "Embedding request failed (model=%s, text_length=%d): %s",
                self.model,
                len(cleaned),
                exc,
            )
            return None

        return self._decode(response)

    def _decode(self, response: Any) -> Vector | None:
        payload = _response_payload(response)
        vector = _DECODERS[self.family](payload) if payload is not None else None
        if vector is None:
            keys = sorted(payload.keys()) if payload is not None else []
            logger.error(
                "Malformed embedding response for family %s (keys=%s)",
                self.family.value,
                keys,
            )
            return None
        if len(vector) != self.dim:
            logger.warning(
                "Embedding dimension mismatch (expected=%d, actual=%d, model=%s)",
                self.dim,
                len(vector),
                self.model,
            )
        return vector

    async def generate_embeddings_batch(
        self,
        texts: list[str],
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> list[Vector | None]:
        """Embed *texts* in consecutive chunks of at most *batch_size*.

        The result has one slot per input text, in input order. A slot is None
        exactly when that text could not be embedded; failures never spread to
        other texts or other chunks. Control returns to the event loop between
        chunks, so at most *batch_size* requests are ever in flight.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        if not texts:
            return []
        if not self.is_configured():
            logger.warning("Embedding provider not configured; batch of %d skipped", len(texts))
            return [None] * len(texts)

        total_batches = (len(texts) + batch_size - 1) // batch_size
        logger.info(
            "Starting batch embedding (texts=%d, batch_size=%d, batches=%d, model=%s)",
            len(texts),
            batch_size,
            total_batches,
            self.model,
        )

        results: list[Vector | None] = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start : start + batch_size]
            batch_number = start // batch_size + 1
            try:
                batch_results = await self._embed_chunk(batch, offset=start)
            except Exception:
                logger.exception(
                    "Embedding batch %d/%d failed; marking %d texts as failed",
                    batch_number,
                    total_batches,
                    len(batch),
                )
                batch_results = [None] * len(batch)
            results.extend(batch_results)
            logger.debug(
                "Embedding batch %d/%d done (ok=%d, failed=%d, progress=%d/%d)",
                batch_number,
                total_batches,
                sum(1 for r in batch_results if r is not None),
                sum(1 for r in batch_results if r is None),
                len(results),
                len(texts),
            )
            await asyncio.sleep(0)

        succeeded = sum(1 for r in results if r is not None)
        logger.info(
            "Batch embedding finished (succeeded=%d, failed=%d)",
            succeeded,
            len(texts) - succeeded,
        )
        return results

    async def _embed_chunk(self, batch: list[str], *, offset: int) -> list[Vector | None]:
        return list(
            await asyncio.gather(
                *(
                    self._embed_isolated(text, index=offset + i)
                    for i, text in enumerate(batch)
                )
            )
        )

    async def _embed_isolated(self, text: str, *, index: int) -> Vector | None:
        try:
            return await self.generate_embedding(text, task_type="RETRIEVAL_DOCUMENT")
        except Exception as exc:
            logger.error("Embedding for text %d failed: %s", index, exc)
            return None

    async def test_connection(self) -> bool:
        """Embed a fixed test string and report whether a vector came back."""
        if not self.is_configured():
            logger.error("Embedding provider not configured; connection test skipped")
            return False
        vector = await self.generate_embedding(_CONNECTION_TEST_TEXT)
        if vector:
            logger.info("Embedding connection ok (model=%s, dimensions=%d)", self.model, len(vector))
            return True
        logger.error("Embedding connection test failed (model=%s)", self.model)
        return False
