"""
PDF split / merge handlers (pypdf).

Split writes one artifact per page span; merge appends the listed documents
after the job's own document, in order. Artifact names are derived from the
params, so re-running the same job overwrites its own output.
"""

from __future__ import annotations

import asyncio
import hashlib
import io
import logging

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from docpipe.core.errors import FatalError
from docpipe.indexing.store import DocumentStore
from docpipe.indexing.types import DocumentSnapshot
from docpipe.jobs.types import JobType
from docpipe.processing.base import JobContext, ProcessingHandler
from docpipe.processing.ocr import PDF_MIME
from docpipe.processing.outputs import Artifact, PdfMergeOutput, PdfSplitOutput
from docpipe.processing.params import PdfMergeParams, PdfSplitParams
from docpipe.storage.content import ContentStorage

logger = logging.getLogger(__name__)


def _open_pdf(data: bytes, label: str) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted:
            raise FatalError(f"{label} is password-protected")
        _ = len(reader.pages)
    except PdfReadError as exc:
        raise FatalError(f"Corrupt or unreadable PDF ({label}): {exc}") from exc
    return reader


def _to_bytes(writer: PdfWriter) -> bytes:
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def split_pdf(data: bytes, spans: list[tuple[int, int]]) -> list[tuple[bytes, int]]:
    """Blocking; returns (pdf_bytes, page_count) per span."""
    reader = _open_pdf(data, "source document")
    parts = []
    for start, end in spans:
        writer = PdfWriter()
        for index in range(start, end):
            writer.add_page(reader.pages[index])
        parts.append((_to_bytes(writer), end - start))
    return parts


def merge_pdfs(sources: list[tuple[str, bytes]]) -> tuple[bytes, int]:
    """Blocking; `sources` is (label, pdf_bytes) in output order."""
    writer = PdfWriter()
    pages = 0
    for label, data in sources:
        reader = _open_pdf(data, label)
        for page in reader.pages:
            writer.add_page(page)
            pages += 1
    return _to_bytes(writer), pages


def _require_pdf(document: DocumentSnapshot) -> None:
    if document.mime_type != PDF_MIME:
        raise FatalError(f"Document {document.id} is {document.mime_type}, not a PDF")


class PdfSplitHandler(ProcessingHandler[PdfSplitParams]):
    job_type = JobType.PDF_SPLIT

    def __init__(self, storage: ContentStorage) -> None:
        self._storage = storage

    async def process(
        self, document: DocumentSnapshot, params: PdfSplitParams, ctx: JobContext,
    ) -> PdfSplitOutput:
        _require_pdf(document)
        data = await self._storage.get_content(document)
        await ctx.checkpoint(10)

        loop = asyncio.get_running_loop()
        page_count = len((await loop.run_in_executor(None, _open_pdf, data, document.name)).pages)
        spans = params.page_spans(page_count)
        if not spans:
            raise FatalError(f"No requested page range falls inside the document ({page_count} pages)")

        parts = await loop.run_in_executor(None, split_pdf, data, spans)
        await ctx.checkpoint(60)

        artifacts: list[Artifact] = []
        for (start, end), (blob, pages) in zip(spans, parts):
            artifacts.append(await self._storage.put_artifact(
                document, f"split-p{start + 1}-{end}.pdf", blob, PDF_MIME, page_count=pages,
            ))
        logger.info("PDF split | doc=%s pages=%d parts=%d", document.id, page_count, len(artifacts))
        return PdfSplitOutput(parts=artifacts)


class PdfMergeHandler(ProcessingHandler[PdfMergeParams]):
    job_type = JobType.PDF_MERGE

    def __init__(self, storage: ContentStorage, documents: DocumentStore) -> None:
        self._storage = storage
        self._documents = documents

    async def _load_others(self, document: DocumentSnapshot, ids: list[str]) -> list[DocumentSnapshot]:
        others = []
        for doc_id in ids:
            other = await self._documents.get(doc_id)
            # Cross-tenant ids look exactly like missing ones
            if other is None or other.organization_id != document.organization_id:
                raise FatalError(f"Document {doc_id} not found")
            _require_pdf(other)
            others.append(other)
        return others

    async def process(
        self, document: DocumentSnapshot, params: PdfMergeParams, ctx: JobContext,
    ) -> PdfMergeOutput:
        _require_pdf(document)
        others = await self._load_others(document, params.document_ids)

        sources = [(document.name, await self._storage.get_content(document))]
        for other in others:
            sources.append((other.name, await self._storage.get_content(other)))
        await ctx.checkpoint(30)

        loop = asyncio.get_running_loop()
        blob, pages = await loop.run_in_executor(None, merge_pdfs, sources)
        await ctx.checkpoint(80)

        digest = hashlib.sha256(",".join(params.document_ids).encode()).hexdigest()[:12]
        artifact = await self._storage.put_artifact(
            document, f"merge-{digest}.pdf", blob, PDF_MIME, page_count=pages,
        )
        logger.info("PDF merged | doc=%s sources=%d pages=%d", document.id, len(sources), pages)
        return PdfMergeOutput(artifact=artifact, source_document_ids=[document.id, *params.document_ids])
