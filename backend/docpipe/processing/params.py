"""
Per-job-type input parameter schemas.

inputParams arrive as free-form JSON from the trigger request. They are
validated here, synchronously, before a job is ever enqueued: a malformed
request raises ValidationError and is never retried. The normalised dict
(defaults filled in) is what gets stored on the job, so a handler always sees
exactly the parameters that were accepted.
"""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from docpipe.core.errors import ValidationError
from docpipe.jobs.types import JobType

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Invoice", "Contract", "Report", "Letter", "Form", "Receipt", "Presentation", "Other",
)

THUMBNAIL_SIZES: dict[str, int] = {
    "small":  100,
    "medium": 300,
    "large":  600,
}

_PAGE_RANGE = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+)\s*)?$")


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class OcrParams(_Params):
    language:  str  = Field("eng", min_length=2, max_length=8, description="Tesseract/Textract language hint")
    force_ocr: bool = Field(False, description="Skip the native text layer and OCR every page")


class ThumbnailParams(_Params):
    size: Literal["small", "medium", "large"] = "medium"
    page: int = Field(1, ge=1, description="1-based page to render")

    @property
    def pixels(self) -> int:
        return THUMBNAIL_SIZES[self.size]


class AiClassifyParams(_Params):
    categories:       list[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES), min_length=1)
    generate_summary: bool      = True

    @field_validator("categories")
    @classmethod
    def _strip_categories(cls, value: list[str]) -> list[str]:
        cleaned = [c.strip() for c in value if c and c.strip()]
        if not cleaned:
            raise ValueError("categories must contain at least one non-empty name")
        return cleaned


class EmbeddingParams(_Params):
    model: str | None = Field(None, description="Override the configured embedding model")


class PdfSplitParams(_Params):
    ranges: list[str] | None = Field(None, description='Page ranges such as ["1-3", "4", "5-10"]')
    every:  int | None       = Field(None, ge=1, description="Split into parts of N pages")

    @model_validator(mode="after")
    def _exactly_one_mode(self) -> "PdfSplitParams":
        if (self.ranges is None) == (self.every is None):
            raise ValueError("provide exactly one of 'ranges' or 'every'")
        return self

    @field_validator("ranges")
    @classmethod
    def _check_ranges(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return value
        if not value:
            raise ValueError("ranges must not be empty")
        for item in value:
            match = _PAGE_RANGE.match(item)
            if not match:
                raise ValueError(f"invalid page range {item!r}")
            start = int(match.group(1))
            end = int(match.group(2) or start)
            if start < 1 or end < start:
                raise ValueError(f"invalid page range {item!r}")
        return value

    def page_spans(self, page_count: int) -> list[tuple[int, int]]:
        """Zero-based, end-exclusive spans clipped to the document length."""
        if self.every is not None:
            return [
                (start, min(start + self.every, page_count))
                for start in range(0, page_count, self.every)
            ]
        spans = []
        for item in self.ranges or []:
            match = _PAGE_RANGE.match(item)
            start = int(match.group(1))
            end = int(match.group(2) or start)
            if start > page_count:
                continue
            spans.append((start - 1, min(end, page_count)))
        return spans


class PdfMergeParams(_Params):
    document_ids: list[str] = Field(..., min_length=1, description="Documents appended after this one, in order")


class ConvertParams(_Params):
    target_format: Literal["pdf", "txt"] = "pdf"


class CompressParams(_Params):
    quality: Literal["low", "medium", "high"] = "medium"


PARAMS_MODELS: dict[JobType, type[_Params]] = {
    JobType.OCR:         OcrParams,
    JobType.THUMBNAIL:   ThumbnailParams,
    JobType.AI_CLASSIFY: AiClassifyParams,
    JobType.EMBEDDING:   EmbeddingParams,
    JobType.PDF_SPLIT:   PdfSplitParams,
    JobType.PDF_MERGE:   PdfMergeParams,
    JobType.CONVERT:     ConvertParams,
    JobType.COMPRESS:    CompressParams,
}

_missing = set(JobType) - set(PARAMS_MODELS)
if _missing:
    raise RuntimeError(f"No params schema for job types: {sorted(t.value for t in _missing)}")


def parse_params(job_type: JobType, params: dict[str, Any] | None) -> _Params:
    """Validate and return the typed params model."""
    try:
        return PARAMS_MODELS[job_type].model_validate(params or {})
    except PydanticValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'inputParams'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(f"Invalid inputParams for {job_type.value}: {errors}") from exc


def validate_params(job_type: JobType, params: dict[str, Any] | None) -> dict[str, Any]:
    """Validate and return the normalised dict stored on the job."""
    return parse_params(job_type, params).model_dump(mode="json")
