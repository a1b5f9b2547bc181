"""
Cross-Encoder Re-Ranking — Cohere ReRank v3

Applied to the top-K slice of the combined ranking only. The reranker
scores (query, document) pairs jointly, which is far more accurate than
comparing separately computed vectors but costs one model pass per pair,
so it never sees the tail.

Cohere ReRank v3 models:
  - rerank-english-v3.0      : best English accuracy
  - rerank-multilingual-v3.0 : 100+ languages, ~5% lower English accuracy

Graceful degradation:
  If the Cohere API key is absent or the call fails, `score()` returns None
  and the caller keeps its own ordering (with a warning in the response).

Dependencies:
  pip install cohere>=5.0.0
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

import cohere

logger = logging.getLogger(__name__)

# Characters of document text sent per candidate
MAX_DOCUMENT_CHARS = 2_000


class Reranker(ABC):

    @property
    @abstractmethod
    def available(self) -> bool: ...

    @abstractmethod
    async def score(self, query: str, documents: list[str]) -> list[float] | None:
        """
        Relevance per document, aligned with `documents`.

        Returns None when reranking is unavailable. Never raises.
        """


class CohereReranker(Reranker):
    """
    Wraps Cohere's async ReRank API for cross-encoder relevance scoring.

    Usage::

        reranker = CohereReranker(api_key=settings.cohere_api_key)
        scores   = await reranker.score("refund policy", texts)

    Thread/async-safe: each .score() call is independent.
    """

    def __init__(
        self,
        model:   str = "rerank-english-v3.0",
        api_key: str = "",
    ) -> None:
        self._model  = model
        self._client = cohere.AsyncClient(api_key=api_key) if api_key else None

        if self._client is not None:
            logger.info("CohereReranker initialised | model=%s", model)
        else:
            logger.warning("COHERE_API_KEY not configured — reranker disabled")

    @property
    def available(self) -> bool:
        return self._client is not None

    async def score(self, query: str, documents: list[str]) -> list[float] | None:
        if not documents:
            return []
        if not self.available:
            return None

        t0 = time.perf_counter()
        try:
            response = await self._client.rerank(   # type: ignore[union-attr]
                model=self._model,
                query=query,
                documents=[d[:MAX_DOCUMENT_CHARS] or " " for d in documents],
                top_n=len(documents),
                return_documents=False,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("CohereReranker API error — keeping original order: %s", exc, exc_info=True)
            return None

        scores = [0.0] * len(documents)
        for result in response.results:
            scores[result.index] = float(result.relevance_score)

        logger.info(
            "CohereReranker | model=%s candidates=%d elapsed_ms=%.1f",
            self._model, len(documents), (time.perf_counter() - t0) * 1000,
        )
        return scores
