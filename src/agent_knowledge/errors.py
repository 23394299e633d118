"""
Error taxonomy for knowledge retrieval.

Only these errors ever reach a caller as a failed response. Provider and
tier-1/tier-2 storage problems are recovered inside the retrieval engine.
"""

from __future__ import annotations

from typing import Any


class KnowledgeError(Exception):
    """Base class for errors surfaced to callers."""

    code = "KNOWLEDGE_ERROR"

    def __init__(self, message: str, *, details: Any | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> dict[str, Any]:
        return {"success": False, "message": self.message, "code": self.code}


class ConfigurationError(KnowledgeError):
    """Raised when a request is missing or misstates its identifiers."""

    code = "KNOWLEDGE_CONFIGURATION"


class NotFoundError(KnowledgeError):
    """Raised when a table does not resolve within the caller's scope."""

    code = "KNOWLEDGE_NOT_FOUND"


class StorageFatalError(KnowledgeError):
    """Raised when the store fails and no weaker search tier remains."""

    code = "KNOWLEDGE_STORAGE"
