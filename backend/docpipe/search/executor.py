"""
Query Planner / Executor.

    execute(SearchQuery) -> SearchResponse

  1. Load the tenant's candidates (read-only snapshot, no locking).
  2. Apply the filter predicate: excluded documents are never scored.
  3. Rank (RankingEngine).
  4. Facets over the full ranked set, then cap and paginate.
  5. When nothing matched, attach did-you-mean suggestions.

Persistence failures propagate (retryable to the caller); semantic-service
failures are absorbed by the ranking engine as warnings.
"""

from __future__ import annotations

import logging
import time
from collections import Counter

from docpipe.indexing.store import DocumentStore
from docpipe.observability.tracing import traced
from docpipe.search.filters import apply_filters
from docpipe.search.query import (
    Facets,
    SearchMeta,
    SearchMode,
    SearchQuery,
    SearchResponse,
    SearchResult,
)
from docpipe.search.ranking import RankingEngine, ScoredDocument
from docpipe.search.suggestions import TermDictionary, autocomplete, did_you_mean

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 200


def make_snippet(text: str | None, max_length: int = SNIPPET_LENGTH) -> str | None:
    """First max_length chars, cut on a word boundary when one is close to the end."""
    if not text or not text.strip():
        return None
    trimmed = text.strip()
    if len(trimmed) <= max_length:
        return trimmed
    cut = trimmed[:max_length]
    last_space = cut.rfind(" ")
    if last_space > max_length * 0.7:
        return cut[:last_space] + "..."
    return cut + "..."


def build_facets(ranked: list[ScoredDocument]) -> Facets:
    mimes: Counter[str] = Counter()
    categories: Counter[str] = Counter()
    tags: Counter[str] = Counter()
    for item in ranked:
        doc = item.document
        mimes[doc.mime_type] += 1
        if doc.representation.category:
            categories[doc.representation.category] += 1
        tags.update(doc.all_tags)
    return Facets(mime_types=dict(mimes), categories=dict(categories), tags=dict(tags))


def to_result(item: ScoredDocument) -> SearchResult:
    doc = item.document
    rep = doc.representation
    return SearchResult(
        id=doc.id,
        name=doc.name,
        mime_type=doc.mime_type,
        size_bytes=doc.size_bytes,
        folder_id=doc.folder_id,
        category=rep.category,
        tags=list(doc.all_tags),
        created_at=doc.created_at,
        updated_at=doc.updated_at,
        snippet=make_snippet(rep.extracted_text or rep.summary),
        score=round(item.score, 6),
        text_score=item.text_score,
        semantic_score=item.semantic_score,
        rerank_score=item.rerank_score,
    )


class QueryExecutor:

    def __init__(
        self,
        store: DocumentStore,
        ranking: RankingEngine,
        *,
        result_cap: int = 1_000,
        suggestion_max_distance: int = 2,
    ) -> None:
        self.store = store
        self.ranking = ranking
        self.result_cap = result_cap
        self.suggestion_max_distance = suggestion_max_distance

    @traced("search.execute")
    async def execute(self, query: SearchQuery) -> SearchResponse:
        t0 = time.perf_counter()

        documents = await self.store.list_candidates(query.organization_id, query.filters)
        candidates = apply_filters(documents, query.filters)
        outcome = await self.ranking.rank(query, candidates)

        ranked = outcome.ranked
        total = len(ranked)
        truncated = total > self.result_cap
        window = ranked[: self.result_cap][query.offset: query.offset + query.limit]

        suggestions = None
        if total == 0:
            # Dictionary over every loaded document, not only the filtered ones
            dictionary = TermDictionary.from_documents(apply_filters(documents, None))
            suggestions = did_you_mean(query.query, dictionary, max_distance=self.suggestion_max_distance)

        meta = SearchMeta(
            mode=query.mode,
            text_weight=outcome.text_weight,
            semantic_weight=outcome.semantic_weight,
            threshold=query.threshold if query.mode is not SearchMode.FULLTEXT else None,
            reranked=outcome.reranked,
            warnings=outcome.warnings,
        )
        took_ms = int((time.perf_counter() - t0) * 1000)

        logger.info(
            "Search | org=%s mode=%s candidates=%d total=%d returned=%d took_ms=%d warnings=%d",
            query.organization_id, query.mode.value, len(candidates), total, len(window), took_ms,
            len(outcome.warnings),
        )
        return SearchResponse(
            results=[to_result(item) for item in window],
            total=total,
            took_ms=took_ms,
            truncated=truncated,
            facets=build_facets(ranked) if query.include_facets else None,
            suggestions=suggestions,
            meta=meta,
        )

    async def suggest(self, organization_id: str, partial: str, limit: int = 10) -> list[str]:
        documents = await self.store.list_candidates(organization_id)
        documents = apply_filters(documents, None)
        return autocomplete(partial, documents, limit=limit)
