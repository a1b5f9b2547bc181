"""
Thumbnail Handler — renders one page to a square-bounded PNG with PyMuPDF.

PDFs render the requested page; images are rasterised directly. The longest
side is scaled to the requested size (small 100, medium 300, large 600 px),
aspect ratio preserved.
"""

from __future__ import annotations

import asyncio
import logging

from docpipe.core.errors import FatalError
from docpipe.indexing.types import DocumentSnapshot
from docpipe.jobs.types import JobType
from docpipe.processing.base import JobContext, ProcessingHandler
from docpipe.processing.ocr import IMAGE_MIMES, PDF_MIME
from docpipe.processing.outputs import ThumbnailOutput
from docpipe.processing.params import ThumbnailParams
from docpipe.storage.content import ContentStorage

logger = logging.getLogger(__name__)


def render_thumbnail(data: bytes, filetype: str, page_number: int, max_side: int) -> tuple[bytes, int, int]:
    """Blocking render; returns (png_bytes, width, height)."""
    import fitz

    try:
        with fitz.open(stream=data, filetype=filetype) as doc:
            if page_number > doc.page_count:
                raise FatalError(f"Page {page_number} out of range (document has {doc.page_count})")
            page = doc[page_number - 1]
            rect = page.rect
            zoom = max_side / max(rect.width, rect.height, 1)
            pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
            return pix.tobytes("png"), pix.width, pix.height
    except (fitz.FileDataError, RuntimeError) as exc:
        raise FatalError(f"Cannot render thumbnail: {exc}") from exc


class ThumbnailHandler(ProcessingHandler[ThumbnailParams]):
    job_type = JobType.THUMBNAIL

    def __init__(self, storage: ContentStorage) -> None:
        self._storage = storage

    async def process(
        self, document: DocumentSnapshot, params: ThumbnailParams, ctx: JobContext,
    ) -> ThumbnailOutput:
        if document.mime_type == PDF_MIME:
            filetype = "pdf"
        elif document.mime_type in IMAGE_MIMES:
            filetype = document.mime_type.split("/", 1)[1]
        else:
            raise FatalError(f"Thumbnails are not supported for {document.mime_type}")

        data = await self._storage.get_content(document)
        await ctx.checkpoint(20)

        loop = asyncio.get_running_loop()
        png, width, height = await loop.run_in_executor(
            None, render_thumbnail, data, filetype, params.page, params.pixels,
        )
        await ctx.checkpoint(80)

        artifact = await self._storage.put_artifact(
            document, f"thumbnail-{params.size}-p{params.page}.png", png, "image/png",
        )
        logger.info(
            "Thumbnail rendered | doc=%s size=%s %dx%d bytes=%d",
            document.id, params.size, width, height, len(png),
        )
        return ThumbnailOutput(
            artifact=artifact, width=width, height=height, size=params.size, page=params.page,
        )
