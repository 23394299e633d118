"""
Configuration helpers for the knowledge engine.

Constructors never read the environment; ``from_env`` helpers exist for the
program edge (CLI) only.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_DB_PATH = "~/.agent_knowledge/knowledge.duckdb"
ENV_DB_PATH = "AGENT_KNOWLEDGE_DB_PATH"

ENV_API_KEY = "GOOGLE_API_KEY"
ENV_EMBEDDING_MODEL = "AGENT_KNOWLEDGE_EMBEDDING_MODEL"
ENV_EMBEDDING_DIM = "AGENT_KNOWLEDGE_EMBEDDING_DIM"
ENV_EMBEDDING_FAMILY = "AGENT_KNOWLEDGE_EMBEDDING_FAMILY"
ENV_EMBEDDING_TIMEOUT = "AGENT_KNOWLEDGE_EMBEDDING_TIMEOUT"

DEFAULT_EMBEDDING_MODEL = "gemini-embedding-001"
DEFAULT_EMBEDDING_DIM = 1024
DEFAULT_EMBEDDING_FAMILY = "gemini"
DEFAULT_EMBEDDING_TIMEOUT = 30.0


@dataclass(frozen=True)
class EmbeddingConfig:
    """Credentials and model settings for the embedding provider."""

    api_key: str | None = None
    model: str = DEFAULT_EMBEDDING_MODEL
    dimensions: int = DEFAULT_EMBEDDING_DIM
    family: str = DEFAULT_EMBEDDING_FAMILY
    request_timeout: float = DEFAULT_EMBEDDING_TIMEOUT

    def __post_init__(self) -> None:
        if self.dimensions < 1:
            raise ValueError(f"Embedding dimensions must be positive, got {self.dimensions}.")
        if self.request_timeout <= 0:
            raise ValueError(
                f"Embedding request timeout must be positive, got {self.request_timeout}."
            )

    @classmethod
    def from_env(cls) -> EmbeddingConfig:
        """Build a config from environment variables, falling back to defaults."""
        return cls(
            api_key=os.getenv(ENV_API_KEY) or None,
            model=os.getenv(ENV_EMBEDDING_MODEL, DEFAULT_EMBEDDING_MODEL),
            dimensions=int(os.getenv(ENV_EMBEDDING_DIM, str(DEFAULT_EMBEDDING_DIM))),
            family=os.getenv(ENV_EMBEDDING_FAMILY, DEFAULT_EMBEDDING_FAMILY).lower(),
            request_timeout=float(
                os.getenv(ENV_EMBEDDING_TIMEOUT, str(DEFAULT_EMBEDDING_TIMEOUT))
            ),
        )


@dataclass(frozen=True)
class RetrievalSettings:
    """Defaults applied to search requests that do not override them."""

    top_k: int = 10
    similarity_threshold: float = 0.5
    page_size: int = 50
    embedding_batch_size: int = 5


def resolve_db_path(override_path: str | None = None) -> str:
    """
    Resolve the DuckDB path from CLI override, env var, or default.

    Precedence:
    1) explicit override_path
    2) AGENT_KNOWLEDGE_DB_PATH
    3) default path
    """
    raw_path = override_path or os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)
