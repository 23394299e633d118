"""Retrieval helpers for knowledge tables."""

from .formatter import ResultFormatter
from .query import RetrievalEngine, SearchOutcome
from .ranker import SearchMethod, SearchResult, merge_hybrid, rank_results
from .resolver import TableResolver
from .semantic import SemanticSearchEngine

__all__ = [
    "ResultFormatter",
    "RetrievalEngine",
    "SearchOutcome",
    "SearchMethod",
    "SearchResult",
    "merge_hybrid",
    "rank_results",
    "TableResolver",
    "SemanticSearchEngine",
]
