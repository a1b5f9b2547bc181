"""
Typed handler outputs.

Each handler returns one of these; the worker stores `to_dict()` as the job's
outputData and hands the same dict to the Index Coordinator. Outputs contain
no timestamps or random values, so re-running a handler on the same content
yields an equal output (at-least-once execution stays idempotent).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class HandlerOutput:

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Artifact:
    """A derived file written to content storage under a deterministic key."""
    key:          str
    content_type: str
    size_bytes:   int
    page_count:   int | None = None


@dataclass(frozen=True)
class OcrOutput(HandlerOutput):
    text:       str
    page_count: int
    confidence: float
    method:     str              # pymupdf | docx | plaintext | textract
    language:   str = "eng"


@dataclass(frozen=True)
class ThumbnailOutput(HandlerOutput):
    artifact: Artifact
    width:    int
    height:   int
    size:     str
    page:     int


@dataclass(frozen=True)
class ClassificationOutput(HandlerOutput):
    category:   str
    confidence: float
    tags:       list[str] = field(default_factory=list)
    language:   str | None = None
    summary:    str | None = None
    model:      str | None = None


@dataclass(frozen=True)
class EmbeddingOutput(HandlerOutput):
    vector:      list[float]
    model:       str
    dimensions:  int
    chunk_count: int
    truncated:   bool = False


@dataclass(frozen=True)
class PdfSplitOutput(HandlerOutput):
    parts: list[Artifact]


@dataclass(frozen=True)
class PdfMergeOutput(HandlerOutput):
    artifact:            Artifact
    source_document_ids: list[str]


@dataclass(frozen=True)
class ConvertOutput(HandlerOutput):
    artifact:      Artifact
    target_format: str


@dataclass(frozen=True)
class CompressOutput(HandlerOutput):
    artifact:        Artifact
    original_size:   int
    compressed_size: int
    quality:         str

    @property
    def ratio(self) -> float:
        return self.compressed_size / self.original_size if self.original_size else 1.0

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["ratio"] = round(self.ratio, 4)
        return data
