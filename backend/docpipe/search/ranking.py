"""
Hybrid Ranking Engine
═════════════════════

Input: a validated SearchQuery and the candidates that passed the filter
predicate. Output: every matching candidate, scored and ordered.

  fulltext  score = lexical                      (documents with a term match)
  semantic  score = cosine                       (documents with cosine ≥ threshold)
  hybrid    score = tw · lexical + sw · cosine   (documents with any contributing term)

In hybrid mode a term contributes only when its weight is non-zero, and the
semantic term only when the document has a vector whose similarity clears
the threshold; a missing term adds nothing. With tw=1, sw=0 the included
set and the scores are exactly those of fulltext mode.

Ordering: score desc → createdAt desc → id asc.

Rerank (optional): the top-K slice by score is re-ordered by cross-encoder
relevance; positions after K are untouched.

Degradation: when the query cannot be embedded, hybrid mode falls back to
tw=1, sw=0 and records a warning. Semantic mode has nothing to fall back to
and raises SemanticServiceUnavailable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime

from docpipe.core.errors import SemanticServiceUnavailable
from docpipe.indexing.types import DocumentSnapshot
from docpipe.search.lexical import LexicalIndex, document_text
from docpipe.search.query import SearchMode, SearchQuery
from docpipe.search.reranker import Reranker
from docpipe.search.semantic import QueryEmbedder, cosine_scores

logger = logging.getLogger(__name__)

DEGRADED_WARNING = "Semantic search unavailable; results ranked by full-text relevance only"
RERANK_UNAVAILABLE_WARNING = "Reranking unavailable; results kept in relevance order"


@dataclass(frozen=True)
class ScoredDocument:
    document:       DocumentSnapshot
    score:          float
    text_score:     float | None = None
    semantic_score: float | None = None
    rerank_score:   float | None = None


@dataclass
class RankingOutcome:
    ranked:          list[ScoredDocument]
    text_weight:     float | None = None
    semantic_weight: float | None = None
    reranked:        bool = False
    warnings:        list[str] = field(default_factory=list)


def sort_key(item: ScoredDocument) -> tuple:
    created = item.document.created_at
    created_ts = created.timestamp() if isinstance(created, datetime) else float("-inf")
    return (-item.score, -created_ts, item.document.id)


class RankingEngine:

    def __init__(
        self,
        query_embedder: QueryEmbedder | None = None,
        reranker: Reranker | None = None,
        *,
        rerank_top_k: int = 50,
    ) -> None:
        self._embedder = query_embedder
        self._reranker = reranker
        self.rerank_top_k = rerank_top_k

    async def rank(self, query: SearchQuery, candidates: list[DocumentSnapshot]) -> RankingOutcome:
        if query.mode is SearchMode.FULLTEXT:
            outcome = self._rank_fulltext(query, candidates)
        elif query.mode is SearchMode.SEMANTIC:
            outcome = await self._rank_semantic(query, candidates)
        else:
            outcome = await self._rank_hybrid(query, candidates)

        outcome.ranked.sort(key=sort_key)
        if query.rerank and outcome.ranked:
            await self._rerank(query.query, outcome)
        return outcome

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def _rank_fulltext(self, query: SearchQuery, candidates: list[DocumentSnapshot]) -> RankingOutcome:
        hits = LexicalIndex.build(candidates).score(query.query)
        ranked = [
            ScoredDocument(doc, hits[doc.id].score, text_score=hits[doc.id].score)
            for doc in candidates if doc.id in hits
        ]
        return RankingOutcome(ranked)

    async def _semantic_scores(
        self, query: SearchQuery, candidates: list[DocumentSnapshot],
    ) -> dict[str, float]:
        """Similarities that clear the threshold; raises SemanticServiceUnavailable."""
        if self._embedder is None:
            raise SemanticServiceUnavailable("No query embedder configured")
        vector = await self._embedder.embed(query.query)
        sims = cosine_scores(vector, candidates)
        return {doc_id: s for doc_id, s in sims.items() if s >= query.threshold}

    async def _rank_semantic(self, query: SearchQuery, candidates: list[DocumentSnapshot]) -> RankingOutcome:
        sims = await self._semantic_scores(query, candidates)
        ranked = [
            ScoredDocument(doc, sims[doc.id], semantic_score=sims[doc.id])
            for doc in candidates if doc.id in sims
        ]
        return RankingOutcome(ranked)

    async def _rank_hybrid(self, query: SearchQuery, candidates: list[DocumentSnapshot]) -> RankingOutcome:
        tw, sw = query.text_weight, query.semantic_weight
        warnings: list[str] = []

        sims: dict[str, float] = {}
        if sw > 0:
            try:
                sims = await self._semantic_scores(query, candidates)
            except SemanticServiceUnavailable as exc:
                logger.warning("Hybrid search degraded to lexical-only | reason=%s", exc.message)
                warnings.append(DEGRADED_WARNING)
                tw, sw = 1.0, 0.0
                sims = {}

        hits = LexicalIndex.build(candidates).score(query.query) if tw > 0 else {}

        ranked: list[ScoredDocument] = []
        for doc in candidates:
            hit = hits.get(doc.id)
            sim = sims.get(doc.id)
            if hit is None and sim is None:
                continue
            score = (tw * hit.score if hit else 0.0) + (sw * sim if sim is not None else 0.0)
            ranked.append(ScoredDocument(
                doc, score,
                text_score=hit.score if hit else None,
                semantic_score=sim,
            ))
        return RankingOutcome(ranked, text_weight=tw, semantic_weight=sw, warnings=warnings)

    # ------------------------------------------------------------------
    # Rerank
    # ------------------------------------------------------------------

    async def _rerank(self, query_text: str, outcome: RankingOutcome) -> None:
        if self._reranker is None or not self._reranker.available:
            outcome.warnings.append(RERANK_UNAVAILABLE_WARNING)
            return

        k = min(self.rerank_top_k, len(outcome.ranked))
        head, tail = outcome.ranked[:k], outcome.ranked[k:]
        scores = await self._reranker.score(query_text, [document_text(item.document) for item in head])
        if scores is None or len(scores) != len(head):
            outcome.warnings.append(RERANK_UNAVAILABLE_WARNING)
            return

        # Stable: equal rerank scores keep their relevance order
        order = sorted(range(len(head)), key=lambda i: -scores[i])
        outcome.ranked = [replace(head[i], rerank_score=scores[i]) for i in order] + tail
        outcome.reranked = True
        logger.debug("Reranked top slice | k=%d total=%d", k, len(outcome.ranked))
