"""
Format conversion and compression (PyMuPDF).

CONVERT
  pdf  images are wrapped page-for-page; text and DOCX are typeset onto A4 pages
  txt  reuses the extracted text when OCR already ran, else the native extractors

COMPRESS
  PDFs are rewritten with garbage collection and stream deflation; the
  quality level picks how aggressive the rewrite is. If the rewrite comes
  out larger than the original, the original bytes are kept.
"""

from __future__ import annotations

import asyncio
import logging

from docpipe.core.errors import FatalError
from docpipe.indexing.types import DocumentSnapshot
from docpipe.jobs.types import JobType
from docpipe.processing.base import JobContext, ProcessingHandler
from docpipe.processing.ocr import (
    DOCX_MIME,
    IMAGE_MIMES,
    PDF_MIME,
    TEXT_MIMES,
    extract_docx_text,
    extract_pdf_text_layer,
    extract_plain_text,
)
from docpipe.processing.outputs import CompressOutput, ConvertOutput
from docpipe.processing.params import CompressParams, ConvertParams
from docpipe.storage.content import ContentStorage

logger = logging.getLogger(__name__)

_A4 = (595, 842)
_MARGIN = 56
_FONT_SIZE = 10
_LINES_PER_PAGE = 64

COMPRESSION_LEVELS: dict[str, dict] = {
    "low":    {"garbage": 4, "deflate": True, "deflate_images": True, "deflate_fonts": True, "clean": True},
    "medium": {"garbage": 3, "deflate": True, "deflate_images": True},
    "high":   {"garbage": 1, "deflate": True},
}


def _is_text(mime: str) -> bool:
    return mime in TEXT_MIMES or mime.startswith("text/")


def image_to_pdf(data: bytes, filetype: str) -> tuple[bytes, int]:
    import fitz

    try:
        with fitz.open(stream=data, filetype=filetype) as img:
            pdf_bytes = img.convert_to_pdf()
    except (fitz.FileDataError, RuntimeError) as exc:
        raise FatalError(f"Cannot convert image: {exc}") from exc
    with fitz.open(stream=pdf_bytes, filetype="pdf") as pdf:
        return pdf_bytes, pdf.page_count


def text_to_pdf(text: str) -> tuple[bytes, int]:
    import fitz

    lines = text.splitlines() or [""]
    with fitz.open() as pdf:
        for start in range(0, len(lines), _LINES_PER_PAGE):
            page = pdf.new_page(width=_A4[0], height=_A4[1])
            rect = fitz.Rect(_MARGIN, _MARGIN, _A4[0] - _MARGIN, _A4[1] - _MARGIN)
            page.insert_textbox(rect, "\n".join(lines[start:start + _LINES_PER_PAGE]), fontsize=_FONT_SIZE)
        return pdf.tobytes(garbage=3, deflate=True), pdf.page_count


def compress_pdf(data: bytes, quality: str) -> bytes:
    import fitz

    try:
        with fitz.open(stream=data, filetype="pdf") as pdf:
            if pdf.needs_pass:
                raise FatalError("PDF is password-protected")
            return pdf.tobytes(**COMPRESSION_LEVELS[quality])
    except (fitz.FileDataError, RuntimeError) as exc:
        raise FatalError(f"Corrupt or unreadable PDF: {exc}") from exc


class ConvertHandler(ProcessingHandler[ConvertParams]):
    job_type = JobType.CONVERT

    def __init__(self, storage: ContentStorage) -> None:
        self._storage = storage

    async def process(
        self, document: DocumentSnapshot, params: ConvertParams, ctx: JobContext,
    ) -> ConvertOutput:
        if params.target_format == "txt":
            blob, pages = await self._to_text(document, ctx)
            name, content_type = "converted.txt", "text/plain"
        else:
            blob, pages = await self._to_pdf(document, ctx)
            name, content_type = "converted.pdf", PDF_MIME
        await ctx.checkpoint(80)

        artifact = await self._storage.put_artifact(document, name, blob, content_type, page_count=pages)
        logger.info(
            "Converted | doc=%s from=%s to=%s bytes=%d",
            document.id, document.mime_type, params.target_format, len(blob),
        )
        return ConvertOutput(artifact=artifact, target_format=params.target_format)

    async def _to_text(self, document: DocumentSnapshot, ctx: JobContext) -> tuple[bytes, int | None]:
        rep = document.representation
        if rep.has_text:
            return (rep.extracted_text or "").encode("utf-8"), rep.page_count

        mime = document.mime_type
        if mime in IMAGE_MIMES:
            raise FatalError(f"Document {document.id} has no extracted text. Run OCR first.")

        data = await self._storage.get_content(document)
        await ctx.checkpoint(20)
        loop = asyncio.get_running_loop()
        if mime == PDF_MIME:
            extracted = await loop.run_in_executor(None, extract_pdf_text_layer, data)
        elif mime == DOCX_MIME:
            extracted = await loop.run_in_executor(None, extract_docx_text, data)
        elif _is_text(mime):
            extracted = extract_plain_text(data)
        else:
            raise FatalError(f"Cannot convert {mime} to txt")
        return extracted.text.encode("utf-8"), len(extracted.pages)

    async def _to_pdf(self, document: DocumentSnapshot, ctx: JobContext) -> tuple[bytes, int]:
        mime = document.mime_type
        if mime == PDF_MIME:
            raise FatalError(f"Document {document.id} is already a PDF")

        data = await self._storage.get_content(document)
        await ctx.checkpoint(20)
        loop = asyncio.get_running_loop()
        if mime in IMAGE_MIMES:
            return await loop.run_in_executor(None, image_to_pdf, data, mime.split("/", 1)[1])
        if mime == DOCX_MIME:
            extracted = await loop.run_in_executor(None, extract_docx_text, data)
        elif _is_text(mime):
            extracted = extract_plain_text(data)
        else:
            raise FatalError(f"Cannot convert {mime} to pdf")
        return await loop.run_in_executor(None, text_to_pdf, extracted.text)


class CompressHandler(ProcessingHandler[CompressParams]):
    job_type = JobType.COMPRESS

    def __init__(self, storage: ContentStorage) -> None:
        self._storage = storage

    async def process(
        self, document: DocumentSnapshot, params: CompressParams, ctx: JobContext,
    ) -> CompressOutput:
        if document.mime_type != PDF_MIME:
            raise FatalError(f"Compression is only supported for PDFs, not {document.mime_type}")

        data = await self._storage.get_content(document)
        await ctx.checkpoint(20)

        loop = asyncio.get_running_loop()
        compressed = await loop.run_in_executor(None, compress_pdf, data, params.quality)
        if len(compressed) >= len(data):
            compressed = data
        await ctx.checkpoint(80)

        artifact = await self._storage.put_artifact(
            document, f"compressed-{params.quality}.pdf", compressed, PDF_MIME,
        )
        logger.info(
            "Compressed | doc=%s quality=%s %d -> %d bytes",
            document.id, params.quality, len(data), len(compressed),
        )
        return CompressOutput(
            artifact=artifact,
            original_size=len(data),
            compressed_size=len(compressed),
            quality=params.quality,
        )
