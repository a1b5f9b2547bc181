"""
Unit Tests — Hybrid Ranking Engine
══════════════════════════════════
Coverage targets:
  ✅ Lexical: only matching documents, top match normalised to 1.0
  ✅ Semantic: threshold drops documents; missing / mismatched vectors absent
  ✅ Hybrid: tw=1, sw=0 ≡ fulltext (ordering and scores)
  ✅ Hybrid: semantic term only contributes at or above threshold
  ✅ Degradation: embedder down → lexical-only with warning; semantic mode raises
  ✅ Rerank: only the top-K slice is reordered, tail untouched
  ✅ Tie-break: score desc → createdAt desc → id asc
"""

from __future__ import annotations

import pytest

from docpipe.core.errors import SemanticServiceUnavailable, TransientError
from docpipe.search.lexical import LexicalIndex, tokenize
from docpipe.search.query import SearchMode, SearchQuery
from docpipe.search.ranking import (
    DEGRADED_WARNING,
    RERANK_UNAVAILABLE_WARNING,
    RankingEngine,
)
from docpipe.search.semantic import QueryEmbedder, cosine_scores
from tests.conftest import FakeReranker, TEST_ORG


def _query(text: str, **fields) -> SearchQuery:
    return SearchQuery(organization_id=TEST_ORG, query=text, **fields)


@pytest.fixture
def engine(embedder, reranker) -> RankingEngine:
    return RankingEngine(QueryEmbedder(embedder), reranker, rerank_top_k=2)


@pytest.fixture
def corpus(make_document):
    """Four documents with mixed text / vector coverage."""
    return [
        make_document(id="d-invoice", text="Invoice for consulting services, invoice total 400", vector=[1.0, 0.0, 0.0]),
        make_document(id="d-contract", text="Consulting contract with payment terms", vector=[0.6, 0.8, 0.0]),
        make_document(id="d-novector", text="Invoice reminder"),
        make_document(id="d-recipe", text="Pancake recipe with blueberries", vector=[0.0, 1.0, 0.0]),
    ]


@pytest.mark.unit
class TestLexical:

    def test_tokenize_keeps_hyphenated_identifiers(self):
        assert tokenize("The SN-48291 invoice, for Q3!") == ["sn-48291", "invoice", "q3"]

    def test_only_matching_documents_scored(self, corpus):
        hits = LexicalIndex.build(corpus).score("invoice")
        assert set(hits) == {"d-invoice", "d-novector"}
        assert max(h.score for h in hits.values()) == 1.0
        assert all(0 < h.score <= 1.0 for h in hits.values())

    def test_stopword_only_query_matches_nothing(self, corpus):
        assert LexicalIndex.build(corpus).score("the and of") == {}

    def test_empty_candidate_set(self):
        assert LexicalIndex.build([]).score("invoice") == {}


@pytest.mark.unit
class TestCosine:

    def test_scores_clamped_and_missing_vectors_absent(self, corpus, make_document):
        opposite = make_document(id="d-opposite", vector=[-1.0, 0.0, 0.0])
        sims = cosine_scores([1.0, 0.0, 0.0], corpus + [opposite])

        assert sims["d-invoice"] == pytest.approx(1.0)
        assert sims["d-contract"] == pytest.approx(0.6)
        assert sims["d-opposite"] == 0.0
        assert "d-novector" not in sims

    def test_mismatched_dimensions_absent(self, make_document):
        old = make_document(id="d-old", vector=[1.0, 0.0])
        assert cosine_scores([1.0, 0.0, 0.0], [old]) == {}

    def test_zero_query_vector(self, corpus):
        assert cosine_scores([0.0, 0.0, 0.0], corpus) == {}


@pytest.mark.unit
class TestModes:

    async def test_fulltext(self, engine, corpus):
        outcome = await engine.rank(_query("invoice"), corpus)
        assert [item.document.id for item in outcome.ranked] == ["d-invoice", "d-novector"]
        assert outcome.ranked[0].score == 1.0
        assert outcome.ranked[0].semantic_score is None

    async def test_semantic_threshold(self, engine, corpus):
        outcome = await engine.rank(_query("anything", mode=SearchMode.SEMANTIC, threshold=0.5), corpus)

        assert [item.document.id for item in outcome.ranked] == ["d-invoice", "d-contract"]
        assert all(item.semantic_score >= 0.5 for item in outcome.ranked)

    async def test_semantic_high_threshold_drops_everything_below(self, engine, corpus):
        outcome = await engine.rank(_query("anything", mode=SearchMode.SEMANTIC, threshold=0.9), corpus)
        assert [item.document.id for item in outcome.ranked] == ["d-invoice"]

    async def test_hybrid_text_only_weights_equal_fulltext(self, engine, embedder, corpus):
        fulltext = await engine.rank(_query("consulting invoice"), corpus)
        hybrid = await engine.rank(
            _query("consulting invoice", mode=SearchMode.HYBRID, text_weight=1.0, semantic_weight=0.0), corpus,
        )

        assert [(i.document.id, i.score) for i in hybrid.ranked] == [(i.document.id, i.score) for i in fulltext.ranked]
        assert embedder.calls == []

    async def test_hybrid_blends_and_respects_threshold(self, engine, corpus):
        outcome = await engine.rank(
            _query("invoice", mode=SearchMode.HYBRID, text_weight=0.5, semantic_weight=1.0, threshold=0.7), corpus,
        )
        by_id = {item.document.id: item for item in outcome.ranked}

        # contract: cosine 0.6 < 0.7 and no lexical match, so it is not a result
        assert set(by_id) == {"d-invoice", "d-novector"}
        assert by_id["d-invoice"].score == pytest.approx(0.5 * by_id["d-invoice"].text_score + 1.0)
        # no vector: lexical term only
        assert by_id["d-novector"].semantic_score is None
        assert by_id["d-novector"].score == pytest.approx(0.5 * by_id["d-novector"].text_score)
        assert outcome.warnings == []

    async def test_hybrid_weights_not_normalised(self, engine, corpus):
        outcome = await engine.rank(
            _query("pancake", mode=SearchMode.HYBRID, text_weight=2.0, semantic_weight=3.0, threshold=0.0), corpus,
        )
        recipe = next(item for item in outcome.ranked if item.document.id == "d-recipe")
        assert recipe.score == pytest.approx(2.0 * 1.0 + 3.0 * 0.0)


@pytest.mark.unit
class TestDegradation:

    async def test_hybrid_degrades_to_lexical(self, engine, embedder, corpus):
        embedder.error = TransientError("embedding service down")
        outcome = await engine.rank(_query("invoice", mode=SearchMode.HYBRID), corpus)

        assert DEGRADED_WARNING in outcome.warnings
        assert (outcome.text_weight, outcome.semantic_weight) == (1.0, 0.0)
        assert [item.document.id for item in outcome.ranked] == ["d-invoice", "d-novector"]

    async def test_hybrid_without_embedder_degrades(self, corpus):
        outcome = await RankingEngine().rank(_query("invoice", mode=SearchMode.HYBRID), corpus)
        assert outcome.warnings == [DEGRADED_WARNING]

    async def test_semantic_mode_raises(self, engine, embedder, corpus):
        embedder.error = RuntimeError("connection reset")
        with pytest.raises(SemanticServiceUnavailable, match="connection reset"):
            await engine.rank(_query("invoice", mode=SearchMode.SEMANTIC), corpus)


@pytest.mark.unit
class TestRerank:

    async def test_only_top_k_slice_reordered(self, embedder, make_document):
        docs = [
            make_document(id="d-a", vector=[1.0, 0.0, 0.0], text="a"),
            make_document(id="d-b", vector=[0.9, 0.1, 0.0], text="bbbbbbbb"),
            make_document(id="d-c", vector=[0.8, 0.2, 0.0], text="cccc"),
            make_document(id="d-d", vector=[0.7, 0.3, 0.0], text="dddddddddddd"),
        ]
        reranker = FakeReranker()   # longer text scores higher
        engine = RankingEngine(QueryEmbedder(embedder), reranker, rerank_top_k=2)

        outcome = await engine.rank(
            _query("q", mode=SearchMode.SEMANTIC, threshold=0.0, rerank=True), docs,
        )

        assert [item.document.id for item in outcome.ranked] == ["d-b", "d-a", "d-c", "d-d"]
        assert outcome.reranked is True
        assert len(reranker.seen[0]) == 2
        assert outcome.ranked[2].rerank_score is None

    async def test_reranker_failure_keeps_order(self, engine, reranker, corpus):
        reranker.fail = True
        outcome = await engine.rank(_query("invoice", rerank=True), corpus)
        assert outcome.reranked is False
        assert RERANK_UNAVAILABLE_WARNING in outcome.warnings
        assert [item.document.id for item in outcome.ranked] == ["d-invoice", "d-novector"]

    async def test_reranker_not_configured(self, embedder, corpus):
        engine = RankingEngine(QueryEmbedder(embedder), FakeReranker(available=False))
        outcome = await engine.rank(_query("invoice", rerank=True), corpus)
        assert outcome.warnings == [RERANK_UNAVAILABLE_WARNING]


@pytest.mark.unit
class TestTieBreak:

    async def test_created_desc_then_id_asc(self, engine, make_document):
        docs = [
            make_document(id="d-2", vector=[1.0, 0.0, 0.0], created_offset_s=10),
            make_document(id="d-1", vector=[1.0, 0.0, 0.0], created_offset_s=10),
            make_document(id="d-3", vector=[1.0, 0.0, 0.0], created_offset_s=20),
        ]
        outcome = await engine.rank(_query("q", mode=SearchMode.SEMANTIC), docs)
        assert [item.document.id for item in outcome.ranked] == ["d-3", "d-1", "d-2"]
