"""
Embedding Handler — one fixed-dimension content vector per document.

OpenAI embedding models:
  text-embedding-3-small  → 1536 dims (default)
  text-embedding-3-large  → 3072 dims

Long documents:
  Text longer than `max_chars` (~8k tokens) is split at sentence boundaries
  (word boundaries for run-on sentences), each chunk is embedded in one
  batch call, and the document vector is the length-weighted mean of the
  chunk vectors, L2-normalised. At most MAX_CHUNKS chunks are embedded; the
  output's `truncated` flag records when text beyond that was dropped.

The same TextEmbedder serves query embedding for semantic search, so query
and document vectors always come from the same model.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod

import numpy as np
from langchain_openai import OpenAIEmbeddings

from docpipe.core.errors import FatalError
from docpipe.indexing.types import DocumentSnapshot
from docpipe.jobs.types import JobType
from docpipe.processing.base import (
    JobContext,
    ProcessingHandler,
    classify_provider_error,
    require_configured,
    require_text,
)
from docpipe.processing.outputs import EmbeddingOutput
from docpipe.processing.params import EmbeddingParams

logger = logging.getLogger(__name__)

MAX_CHUNKS = 16

_SENTENCE = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")


# ---------------------------------------------------------------------------
# Chunking + aggregation (pure)
# ---------------------------------------------------------------------------

def split_into_chunks(text: str, max_chars: int) -> list[str]:
    """Greedy sentence packing; every chunk is at most max_chars long."""
    text = text.strip()
    if not text:
        return []
    if len(text) <= max_chars:
        return [text]

    chunks: list[str] = []
    current = ""

    def _flush() -> None:
        nonlocal current
        if current.strip():
            chunks.append(current.strip())
        current = ""

    for sentence in _SENTENCE.findall(text):
        if len(current) + len(sentence) <= max_chars:
            current += sentence
            continue
        _flush()
        if len(sentence) <= max_chars:
            current = sentence
            continue
        # Run-on sentence: pack words, hard-split words longer than a chunk
        for word in sentence.split():
            while len(word) > max_chars:
                _flush()
                chunks.append(word[:max_chars])
                word = word[max_chars:]
            if len(current) + len(word) + 1 > max_chars:
                _flush()
            current = f"{current} {word}" if current else word
    _flush()
    return chunks


def weighted_mean_vector(vectors: list[list[float]], weights: list[int]) -> list[float]:
    """Length-weighted mean of chunk vectors, L2-normalised."""
    matrix = np.asarray(vectors, dtype=np.float64)
    w = np.asarray(weights, dtype=np.float64)
    mean = (matrix * w[:, None]).sum(axis=0) / w.sum()
    norm = np.linalg.norm(mean)
    if norm == 0:
        return mean.tolist()
    return (mean / norm).tolist()


# ---------------------------------------------------------------------------
# Embedders
# ---------------------------------------------------------------------------

class TextEmbedder(ABC):

    model: str
    dimensions: int

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]: ...

    def for_model(self, model: str | None) -> "TextEmbedder":
        """Embedder for an overridden model; self when no override."""
        return self


class OpenAITextEmbedder(TextEmbedder):
    """LangChain OpenAIEmbeddings, one client per model."""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", dimensions: int = 1536) -> None:
        self._api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self._client: OpenAIEmbeddings | None = None
        self._variants: dict[str, OpenAITextEmbedder] = {}

    @property
    def available(self) -> bool:
        return bool(self._api_key)

    def _embeddings(self) -> OpenAIEmbeddings:
        require_configured(self._api_key, "OpenAI embeddings")
        if self._client is None:
            self._client = OpenAIEmbeddings(
                model=self.model,
                api_key=self._api_key,
                dimensions=self.dimensions,
            )
        return self._client

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return await self._embeddings().aembed_documents(texts)

    async def embed_query(self, text: str) -> list[float]:
        return await self._embeddings().aembed_query(text)

    def for_model(self, model: str | None) -> TextEmbedder:
        if not model or model == self.model:
            return self
        if model not in self._variants:
            self._variants[model] = OpenAITextEmbedder(self._api_key, model, self.dimensions)
        return self._variants[model]


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

class EmbeddingHandler(ProcessingHandler[EmbeddingParams]):
    job_type = JobType.EMBEDDING

    def __init__(self, embedder: TextEmbedder, *, max_chars: int = 32_000) -> None:
        self._embedder = embedder
        self._max_chars = max_chars

    async def process(
        self, document: DocumentSnapshot, params: EmbeddingParams, ctx: JobContext,
    ) -> EmbeddingOutput:
        text = require_text(document)
        embedder = self._embedder.for_model(params.model)

        chunks = split_into_chunks(text, self._max_chars)
        truncated = len(chunks) > MAX_CHUNKS
        chunks = chunks[:MAX_CHUNKS]
        await ctx.checkpoint(20)

        try:
            vectors = await embedder.embed_documents(chunks)
        except Exception as exc:
            raise classify_provider_error(exc, "OpenAI embeddings") from exc
        await ctx.checkpoint(80)

        if len(vectors) != len(chunks) or any(len(v) != embedder.dimensions for v in vectors):
            raise FatalError(
                f"Embedding model {embedder.model} returned unexpected shape "
                f"(expected {len(chunks)}x{embedder.dimensions})"
            )

        vector = weighted_mean_vector(vectors, [len(c) for c in chunks])

        logger.info(
            "Embedded | doc=%s model=%s chunks=%d truncated=%s chars=%d",
            document.id, embedder.model, len(chunks), truncated, len(text),
        )
        return EmbeddingOutput(
            vector=vector,
            model=embedder.model,
            dimensions=len(vector),
            chunk_count=len(chunks),
            truncated=truncated,
        )
