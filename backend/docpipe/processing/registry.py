"""
Job type → handler table.

The table must cover every JobType; HandlerRegistry refuses to build
otherwise, so a new job type without a handler fails at startup rather than
when its first job is leased.
"""

from __future__ import annotations

import logging
from typing import Mapping

from docpipe.core.config import Settings
from docpipe.indexing.store import DocumentStore
from docpipe.indexing.types import DocumentSnapshot
from docpipe.jobs.types import JobType
from docpipe.observability.tracing import traced
from docpipe.processing.base import JobContext, ProcessingHandler
from docpipe.processing.classify import AiClassifyHandler, DocumentClassifier, OpenAIClassifier
from docpipe.processing.convert import CompressHandler, ConvertHandler
from docpipe.processing.embedding import EmbeddingHandler, OpenAITextEmbedder, TextEmbedder
from docpipe.processing.ocr import OcrEngine, OcrHandler, TextractOcrEngine
from docpipe.processing.outputs import HandlerOutput
from docpipe.processing.params import parse_params
from docpipe.processing.pdf import PdfMergeHandler, PdfSplitHandler
from docpipe.processing.thumbnail import ThumbnailHandler
from docpipe.storage.content import ContentStorage

logger = logging.getLogger(__name__)


class HandlerRegistry:

    def __init__(self, handlers: Mapping[JobType, ProcessingHandler]) -> None:
        missing = set(JobType) - set(handlers)
        if missing:
            raise ValueError(f"No handler registered for: {sorted(t.value for t in missing)}")
        for job_type, handler in handlers.items():
            if handler.job_type is not job_type:
                raise ValueError(f"{handler!r} registered under {job_type.value}")
        self._handlers = dict(handlers)

    def get(self, job_type: JobType) -> ProcessingHandler:
        return self._handlers[job_type]

    @traced("handler.process")
    async def run(self, document: DocumentSnapshot, ctx: JobContext) -> HandlerOutput:
        """Re-parse the stored params and invoke the job type's handler."""
        job = ctx.job
        params = parse_params(job.job_type, job.input_params)
        handler = self._handlers[job.job_type]
        logger.debug("Handler start | job=%s handler=%r", job.id, handler)
        return await handler.process(document, params, ctx)


def build_default_registry(
    settings: Settings,
    *,
    storage: ContentStorage,
    documents: DocumentStore,
    ocr_engine: OcrEngine | None = None,
    classifier: DocumentClassifier | None = None,
    embedder: TextEmbedder | None = None,
) -> HandlerRegistry:
    """Production wiring; any collaborator can be overridden (tests)."""
    if ocr_engine is None and settings.ocr_backend == "textract":
        ocr_engine = TextractOcrEngine(region=settings.aws_region)
    classifier = classifier or OpenAIClassifier(settings.openai_api_key, settings.classify_model)
    embedder = embedder or OpenAITextEmbedder(
        settings.openai_api_key, settings.embedding_model, settings.embedding_dimensions,
    )

    return HandlerRegistry({
        JobType.OCR:         OcrHandler(storage, ocr_engine),
        JobType.THUMBNAIL:   ThumbnailHandler(storage),
        JobType.AI_CLASSIFY: AiClassifyHandler(classifier),
        JobType.EMBEDDING:   EmbeddingHandler(embedder, max_chars=settings.embedding_max_chars),
        JobType.PDF_SPLIT:   PdfSplitHandler(storage),
        JobType.PDF_MERGE:   PdfMergeHandler(storage, documents),
        JobType.CONVERT:     ConvertHandler(storage),
        JobType.COMPRESS:    CompressHandler(storage),
    })
