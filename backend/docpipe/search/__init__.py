"""
Search package: filter → rank (lexical / semantic / hybrid, optional rerank)
→ paginate, plus autocomplete and did-you-mean suggestions.
"""

from docpipe.search.executor import QueryExecutor
from docpipe.search.query import (
    SearchFilters,
    SearchMode,
    SearchQuery,
    SearchResponse,
    SearchResult,
)
from docpipe.search.ranking import RankingEngine

__all__ = [
    "QueryExecutor",
    "RankingEngine",
    "SearchFilters",
    "SearchMode",
    "SearchQuery",
    "SearchResponse",
    "SearchResult",
]
