"""
Unit Tests — inputParams validation
═══════════════════════════════════
Coverage targets:
  ✅ Defaults filled in and stored normalised
  ✅ Unknown keys rejected
  ✅ PDF_SPLIT: exactly one of ranges / every, range syntax, span clipping
  ✅ PDF_MERGE requires at least one document id
  ✅ Errors surface as ValidationError with the job type in the message
"""

from __future__ import annotations

import pytest

from docpipe.core.errors import ValidationError
from docpipe.jobs.types import JobType
from docpipe.processing.params import (
    DEFAULT_CATEGORIES,
    PARAMS_MODELS,
    PdfSplitParams,
    ThumbnailParams,
    parse_params,
    validate_params,
)


@pytest.mark.unit
class TestDefaults:

    def test_every_job_type_has_a_schema(self):
        assert set(PARAMS_MODELS) == set(JobType)

    def test_ocr_defaults(self):
        assert validate_params(JobType.OCR, None) == {"language": "eng", "force_ocr": False}

    def test_classify_defaults_to_builtin_categories(self):
        params = validate_params(JobType.AI_CLASSIFY, {})
        assert params["categories"] == list(DEFAULT_CATEGORIES)
        assert params["generate_summary"] is True

    def test_thumbnail_pixels(self):
        assert ThumbnailParams(size="large").pixels == 600
        assert ThumbnailParams().pixels == 300


@pytest.mark.unit
class TestRejections:

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError, match="Invalid inputParams for OCR"):
            validate_params(JobType.OCR, {"langauge": "deu"})

    def test_bad_thumbnail_size(self):
        with pytest.raises(ValidationError, match="size"):
            validate_params(JobType.THUMBNAIL, {"size": "huge"})

    def test_thumbnail_page_must_be_positive(self):
        with pytest.raises(ValidationError):
            validate_params(JobType.THUMBNAIL, {"page": 0})

    def test_blank_categories_rejected(self):
        with pytest.raises(ValidationError):
            validate_params(JobType.AI_CLASSIFY, {"categories": ["  ", ""]})

    def test_merge_needs_documents(self):
        with pytest.raises(ValidationError):
            validate_params(JobType.PDF_MERGE, {"document_ids": []})

    def test_convert_target_format(self):
        assert validate_params(JobType.CONVERT, {"target_format": "txt"}) == {"target_format": "txt"}
        with pytest.raises(ValidationError):
            validate_params(JobType.CONVERT, {"target_format": "docx"})


@pytest.mark.unit
class TestPdfSplitParams:

    @pytest.mark.parametrize("params", [{}, {"ranges": ["1-2"], "every": 2}])
    def test_exactly_one_mode(self, params):
        with pytest.raises(ValidationError, match="exactly one"):
            parse_params(JobType.PDF_SPLIT, params)

    @pytest.mark.parametrize("bad", ["0-2", "3-1", "a-b", "1-", ""])
    def test_invalid_ranges(self, bad):
        with pytest.raises(ValidationError):
            parse_params(JobType.PDF_SPLIT, {"ranges": [bad]})

    def test_every_spans(self):
        spans = PdfSplitParams(every=2).page_spans(5)
        assert spans == [(0, 2), (2, 4), (4, 5)]

    def test_ranges_are_clipped_and_out_of_range_dropped(self):
        spans = PdfSplitParams(ranges=["1-2", "4-9", "7"]).page_spans(5)
        assert spans == [(0, 2), (3, 5)]

    def test_single_page_range(self):
        assert PdfSplitParams(ranges=[" 3 "]).page_spans(5) == [(2, 3)]
