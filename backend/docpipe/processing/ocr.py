"""
OCR Handler — text extraction with a strategy per content type
═══════════════════════════════════════════════════════════════

Strategies, cheapest first:

  PDF text layer (PyMuPDF)
    - Native text layer, zero API calls, runs in a thread executor
    - Returns near-empty pages for scanned documents

  DOCX (python-docx)
    - Paragraph text in document order

  Plain text
    - UTF-8 with latin-1 fallback

  OCR engine (AWS Textract)
    - Images, and PDFs whose text layer is too thin to be real text
      (average chars per page below MIN_CHARS_PER_PAGE_THRESHOLD)
    - Forced for PDFs with params.force_ocr

The handler output carries the method that produced the text so that
downstream consumers can judge its quality.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from botocore.exceptions import BotoCoreError, ClientError

from docpipe.core.errors import FatalError, TransientError
from docpipe.indexing.types import DocumentSnapshot
from docpipe.jobs.types import JobType
from docpipe.processing.base import SERVICE_NOT_CONFIGURED, JobContext, ProcessingHandler
from docpipe.processing.outputs import OcrOutput
from docpipe.processing.params import OcrParams
from docpipe.storage.content import ContentStorage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# Below this average, a PDF is treated as scanned / image-based.
MIN_CHARS_PER_PAGE_THRESHOLD = 50

# Prevents worker stalls on pathological documents
OCR_TIMEOUT_SECONDS = 120

PDF_MIME  = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
IMAGE_MIMES = frozenset({"image/png", "image/jpeg", "image/tiff"})
TEXT_MIMES  = frozenset({"text/plain", "text/markdown", "text/csv", "application/json"})


@dataclass
class ExtractedText:
    pages:      list[str]
    confidence: float
    method:     str

    @property
    def text(self) -> str:
        return "\n\n".join(p for p in self.pages if p.strip())

    @property
    def avg_chars_per_page(self) -> float:
        if not self.pages:
            return 0.0
        return sum(len(p) for p in self.pages) / len(self.pages)

    def is_likely_scanned(self) -> bool:
        return self.avg_chars_per_page < MIN_CHARS_PER_PAGE_THRESHOLD


def is_supported(mime: str) -> bool:
    return (
        mime in (PDF_MIME, DOCX_MIME)
        or mime in IMAGE_MIMES
        or mime in TEXT_MIMES
        or mime.startswith("text/")
    )


# ---------------------------------------------------------------------------
# Native extractors (blocking, run in the default executor)
# ---------------------------------------------------------------------------

def extract_pdf_text_layer(data: bytes) -> ExtractedText:
    import fitz  # PyMuPDF

    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            if doc.needs_pass:
                raise FatalError("PDF is password-protected")
            pages = [(page.get_text("text") or "").strip() for page in doc]
    except (fitz.FileDataError, RuntimeError) as exc:
        raise FatalError(f"Corrupt or unreadable PDF: {exc}") from exc
    return ExtractedText(pages=pages, confidence=1.0, method="pymupdf")


def extract_docx_text(data: bytes) -> ExtractedText:
    import docx  # python-docx
    from docx.opc.exceptions import PackageNotFoundError

    try:
        document = docx.Document(io.BytesIO(data))
    except (PackageNotFoundError, ValueError, KeyError) as exc:
        raise FatalError(f"Corrupt or unreadable DOCX: {exc}") from exc
    text = "\n".join(p.text for p in document.paragraphs if p.text.strip())
    return ExtractedText(pages=[text], confidence=1.0, method="docx")


def extract_plain_text(data: bytes) -> ExtractedText:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        text = data.decode("latin-1")
    return ExtractedText(pages=[text.strip()], confidence=1.0, method="plaintext")


# ---------------------------------------------------------------------------
# OCR engines
# ---------------------------------------------------------------------------

class OcrEngine(ABC):

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def recognize(self, data: bytes, *, language: str) -> ExtractedText: ...


class TextractOcrEngine(OcrEngine):
    """
    AWS Textract DetectDocumentText (synchronous API).

    Textract detects the language itself; `language` is only logged.
    IAM: textract:DetectDocumentText on the worker task role.
    """

    _FATAL_CODES = frozenset({
        "InvalidParameterException",
        "UnsupportedDocumentException",
        "BadDocumentException",
        "DocumentTooLargeException",
        "AccessDeniedException",
    })

    def __init__(self, region: str = "us-east-1") -> None:
        self._region = region

    @property
    def name(self) -> str:
        return "textract"

    async def recognize(self, data: bytes, *, language: str) -> ExtractedText:
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(None, self._detect_sync, data),
                timeout=OCR_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as exc:
            raise TransientError(f"Textract timed out after {OCR_TIMEOUT_SECONDS}s") from exc
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in self._FATAL_CODES:
                raise FatalError(f"Textract rejected the document: {code}") from exc
            raise TransientError(f"Textract error {code}") from exc
        except BotoCoreError as exc:
            raise TransientError(f"Textract unreachable: {exc}") from exc

        logger.info(
            "Textract | pages=%d chars=%d lang=%s elapsed_ms=%.0f",
            len(result.pages), len(result.text), language, (time.monotonic() - t0) * 1000,
        )
        return result

    def _detect_sync(self, data: bytes) -> ExtractedText:
        import boto3

        client = boto3.client("textract", region_name=self._region)
        response = client.detect_document_text(Document={"Bytes": data})

        lines: dict[int, list[str]] = {}
        confidences: list[float] = []
        for block in response.get("Blocks", []):
            if block["BlockType"] == "LINE":
                lines.setdefault(block.get("Page", 1), []).append(block.get("Text", ""))
            elif block["BlockType"] == "WORD":
                confidences.append(block.get("Confidence", 0.0) / 100.0)

        pages = ["\n".join(lines[pn]) for pn in sorted(lines)]
        confidence = round(sum(confidences) / len(confidences), 3) if confidences else 0.0
        return ExtractedText(pages=pages, confidence=confidence, method=self.name)


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

class OcrHandler(ProcessingHandler[OcrParams]):
    job_type = JobType.OCR

    def __init__(self, storage: ContentStorage, ocr_engine: OcrEngine | None = None) -> None:
        self._storage = storage
        self._engine = ocr_engine

    async def process(self, document: DocumentSnapshot, params: OcrParams, ctx: JobContext) -> OcrOutput:
        mime = document.mime_type
        if not is_supported(mime):
            raise FatalError(f"OCR does not support {mime}")

        data = await self._storage.get_content(document)
        await ctx.checkpoint(10)

        loop = asyncio.get_running_loop()
        if mime == PDF_MIME:
            result = await self._extract_pdf(data, params, ctx)
        elif mime == DOCX_MIME:
            result = await loop.run_in_executor(None, extract_docx_text, data)
        elif mime in IMAGE_MIMES:
            result = await self._ocr(data, params)
        else:
            result = extract_plain_text(data)

        await ctx.checkpoint(90)

        logger.info(
            "OCR done | doc=%s method=%s pages=%d chars=%d",
            document.id, result.method, len(result.pages), len(result.text),
        )
        return OcrOutput(
            text=result.text,
            page_count=len(result.pages),
            confidence=result.confidence,
            method=result.method,
            language=params.language,
        )

    async def _extract_pdf(self, data: bytes, params: OcrParams, ctx: JobContext) -> ExtractedText:
        loop = asyncio.get_running_loop()
        native = await loop.run_in_executor(None, extract_pdf_text_layer, data)
        if not params.force_ocr and not native.is_likely_scanned():
            return native

        await ctx.checkpoint(40)
        if self._engine is None:
            if params.force_ocr:
                raise FatalError("OCR engine is not configured", code=SERVICE_NOT_CONFIGURED)
            logger.warning(
                "PDF looks scanned but no OCR engine is configured | avg_chars=%.0f",
                native.avg_chars_per_page,
            )
            return native

        scanned = await self._engine.recognize(data, language=params.language)
        if len(scanned.pages) < len(native.pages):
            scanned.pages.extend([""] * (len(native.pages) - len(scanned.pages)))
        return scanned

    async def _ocr(self, data: bytes, params: OcrParams) -> ExtractedText:
        if self._engine is None:
            raise FatalError("OCR engine is not configured", code=SERVICE_NOT_CONFIGURED)
        return await self._engine.recognize(data, language=params.language)
