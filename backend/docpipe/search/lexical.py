"""
Lexical scoring — BM25 over the filtered candidate set.

The index is built per query over the candidates that survived the filter
predicate (late-fusion pattern: no separate search cluster). Each document
is indexed as name + tags + category + summary + extracted text.

Scoring uses BM25Plus rather than BM25Okapi: Okapi's IDF turns negative for
terms that occur in more than half of a small candidate set, which would
rank a matching document below a non-matching one. BM25Plus keeps IDF
positive; its lower-bound term (delta) is added for every query term, so a
document only counts as a match when it shares at least one token with the
query. Matched scores are divided by the best score, giving [0, 1] with the
top match at exactly 1.0.

Dependencies:
  pip install rank-bm25>=0.2.2
"""

from __future__ import annotations

import string
from dataclasses import dataclass

from rank_bm25 import BM25Plus

from docpipe.indexing.types import DocumentSnapshot

# ---------------------------------------------------------------------------
# Minimal English stopword list for BM25 tokenisation
# ---------------------------------------------------------------------------

_STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "it", "as", "be", "was", "are",
    "that", "this", "which", "have", "has", "had", "not", "no", "can",
    "will", "would", "could", "should", "may", "might", "do", "does",
    "did", "its", "their", "our", "your", "my", "his", "her",
})

_PUNCT_TABLE = str.maketrans(string.punctuation.replace("-", ""), " " * (len(string.punctuation) - 1))


def tokenize(text: str) -> list[str]:
    """
    Lowercase → punctuation to spaces → drop stopwords.

    Keeps hyphens (identifiers like "SN-48291", "Q3-2024"). May return an
    empty list; callers decide what an empty query means.
    """
    text = text.lower().translate(_PUNCT_TABLE)
    return [t.strip("-") for t in text.split() if t.strip("-") and t not in _STOPWORDS]


def document_text(doc: DocumentSnapshot) -> str:
    """Everything a lexical match may hit, in one string."""
    rep = doc.representation
    parts = [doc.name, " ".join(doc.all_tags), rep.category or "", rep.summary or "", rep.extracted_text or ""]
    return " ".join(p for p in parts if p)


@dataclass(frozen=True)
class LexicalHit:
    document_id: str
    raw_score:   float
    score:       float      # normalised to [0, 1]


class LexicalIndex:
    """
    BM25 index over one candidate set. Stateless after construction.

    Example::

        index = LexicalIndex.build(candidates)
        hits  = index.score("quarterly invoice")
    """

    __slots__ = ("_ids", "_token_sets", "_bm25")

    def __init__(self, ids: list[str], token_sets: list[frozenset[str]], bm25: BM25Plus | None) -> None:
        self._ids = ids
        self._token_sets = token_sets
        self._bm25 = bm25

    @classmethod
    def build(cls, candidates: list[DocumentSnapshot]) -> "LexicalIndex":
        tokenized = [tokenize(document_text(doc)) for doc in candidates]
        # BM25Plus divides by the average document length; pad empty docs
        corpus = [tokens or ["<empty>"] for tokens in tokenized]
        bm25 = BM25Plus(corpus) if corpus else None
        return cls([d.id for d in candidates], [frozenset(t) for t in tokenized], bm25)

    def score(self, query: str) -> dict[str, LexicalHit]:
        """Hits keyed by document id; non-matching documents are absent."""
        query_tokens = tokenize(query)
        if not query_tokens or self._bm25 is None:
            return {}

        wanted = set(query_tokens)
        raw = self._bm25.get_scores(query_tokens)
        matched = [
            (doc_id, float(raw[i]))
            for i, doc_id in enumerate(self._ids)
            if wanted & self._token_sets[i]
        ]
        if not matched:
            return {}

        best = max(s for _, s in matched)
        return {
            doc_id: LexicalHit(doc_id, s, s / best if best > 0 else 1.0)
            for doc_id, s in matched
        }

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<LexicalIndex docs={len(self)}>"
