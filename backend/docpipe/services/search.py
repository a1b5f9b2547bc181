"""
Search Service — the externally exposed search operations.

  search(query, mode, filters, limit, offset)                         -> SearchResponse
  semantic_search(query, limit, threshold, filters, rerank)           -> SearchResponse
  hybrid_search(query, text_weight, semantic_weight, threshold,
                filters, rerank, limit, offset)                        -> SearchResponse
  suggest(partial_query, limit)                                        -> [str]

Defaults (limits, thresholds, hybrid weights) come from Settings; explicit
arguments are used as given, weights included (they need not sum to 1).
"""

from __future__ import annotations

from docpipe.auth.tenant import TenantContext
from docpipe.core.config import Settings
from docpipe.search.executor import QueryExecutor
from docpipe.search.query import SearchFilters, SearchMode, SearchQuery, SearchResponse

SEMANTIC_DEFAULT_LIMIT = 10
SUGGEST_MAX_LIMIT = 20


class SearchService:

    def __init__(self, executor: QueryExecutor, settings: Settings) -> None:
        self._executor = executor
        self._settings = settings

    async def search(
        self,
        tenant: TenantContext,
        query: str,
        mode: SearchMode = SearchMode.FULLTEXT,
        filters: SearchFilters | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
        include_facets: bool = True,
    ) -> SearchResponse:
        """Generic entry point; semantic/hybrid modes use the configured defaults."""
        if mode is SearchMode.SEMANTIC:
            threshold = self._settings.search_default_threshold
        else:
            threshold = self._settings.hybrid_default_threshold
        return await self._executor.execute(SearchQuery.build(
            organization_id=tenant.organization_id,
            query=query,
            mode=mode,
            filters=filters or SearchFilters(),
            limit=limit or self._settings.search_default_limit,
            offset=offset,
            text_weight=self._settings.hybrid_default_text_weight,
            semantic_weight=self._settings.hybrid_default_semantic_weight,
            threshold=threshold,
            include_facets=include_facets,
        ))

    async def semantic_search(
        self,
        tenant: TenantContext,
        query: str,
        *,
        limit: int = SEMANTIC_DEFAULT_LIMIT,
        threshold: float | None = None,
        filters: SearchFilters | None = None,
        rerank: bool = False,
    ) -> SearchResponse:
        return await self._executor.execute(SearchQuery.build(
            organization_id=tenant.organization_id,
            query=query,
            mode=SearchMode.SEMANTIC,
            filters=filters or SearchFilters(),
            limit=limit,
            threshold=self._settings.search_default_threshold if threshold is None else threshold,
            rerank=rerank,
        ))

    async def hybrid_search(
        self,
        tenant: TenantContext,
        query: str,
        *,
        text_weight: float | None = None,
        semantic_weight: float | None = None,
        threshold: float | None = None,
        filters: SearchFilters | None = None,
        rerank: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> SearchResponse:
        s = self._settings
        return await self._executor.execute(SearchQuery.build(
            organization_id=tenant.organization_id,
            query=query,
            mode=SearchMode.HYBRID,
            filters=filters or SearchFilters(),
            limit=limit or s.search_default_limit,
            offset=offset,
            text_weight=s.hybrid_default_text_weight if text_weight is None else text_weight,
            semantic_weight=s.hybrid_default_semantic_weight if semantic_weight is None else semantic_weight,
            threshold=s.hybrid_default_threshold if threshold is None else threshold,
            rerank=rerank,
        ))

    async def suggest(self, tenant: TenantContext, partial_query: str, limit: int = 10) -> list[str]:
        limit = max(1, min(limit, SUGGEST_MAX_LIMIT))
        return await self._executor.suggest(tenant.organization_id, partial_query, limit)
