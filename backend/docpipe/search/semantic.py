"""
Semantic scoring — cosine similarity between the query embedding and each
candidate's content vector.

Query and document vectors come from the same TextEmbedder, so they share a
model and dimension. Documents without a vector, or with a vector from a
different dimension (embedded before a model change), get no score at all:
absent, not zero.

Similarities are clamped to [0, 1]; negative cosine means "unrelated" for
ranking purposes.
"""

from __future__ import annotations

import logging

import numpy as np

from docpipe.core.errors import PipelineError, SemanticServiceUnavailable
from docpipe.indexing.types import DocumentSnapshot
from docpipe.processing.embedding import TextEmbedder

logger = logging.getLogger(__name__)


class QueryEmbedder:
    """Embeds search queries; any failure surfaces as SemanticServiceUnavailable."""

    def __init__(self, embedder: TextEmbedder) -> None:
        self._embedder = embedder

    @property
    def model(self) -> str:
        return self._embedder.model

    async def embed(self, query: str) -> list[float]:
        try:
            vector = await self._embedder.embed_query(query)
        except SemanticServiceUnavailable:
            raise
        except Exception as exc:
            message = exc.message if isinstance(exc, PipelineError) else str(exc)
            raise SemanticServiceUnavailable(f"Query embedding failed: {message}") from exc
        if not vector:
            raise SemanticServiceUnavailable("Query embedding returned an empty vector")
        return vector


def cosine_scores(query_vector: list[float], candidates: list[DocumentSnapshot]) -> dict[str, float]:
    """Similarity in [0, 1] per document that has a compatible vector."""
    q = np.asarray(query_vector, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    if q_norm == 0:
        return {}

    ids: list[str] = []
    rows: list[tuple[float, ...]] = []
    skipped = 0
    for doc in candidates:
        vector = doc.representation.content_vector
        if vector is None:
            continue
        if len(vector) != len(q):
            skipped += 1
            continue
        ids.append(doc.id)
        rows.append(vector)

    if skipped:
        logger.warning("Skipped documents with mismatched vector dimensions | count=%d dims=%d", skipped, len(q))
    if not rows:
        return {}

    matrix = np.asarray(rows, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    norms[norms == 0] = np.inf
    sims = (matrix @ q) / (norms * q_norm)
    sims = np.clip(sims, 0.0, 1.0)
    return {doc_id: float(s) for doc_id, s in zip(ids, sims)}
