"""
Unit Tests — IndexCoordinator
═════════════════════════════
Coverage targets:
  ✅ Each job type writes only its own field set
  ✅ Merging the same output twice is a no-op (idempotent, no version bump)
  ✅ Re-running a job type replaces, never appends
  ✅ Version conflict → re-read + re-merge, other type's fields preserved
  ✅ Conflicts on every attempt → ConcurrentUpdateError (retryable)
  ✅ Missing document / malformed output → FatalError
"""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from docpipe.core.errors import ConcurrentUpdateError, FatalError
from docpipe.indexing.coordinator import MERGERS, IndexCoordinator, apply_output
from docpipe.indexing.store import InMemoryDocumentStore
from docpipe.indexing.types import SearchableRepresentation
from docpipe.jobs.types import JobType

OCR_OUT = {"text": "Quarterly report", "page_count": 3, "confidence": 0.97, "method": "pymupdf", "language": "eng"}
EMBED_OUT = {"vector": [0.6, 0.8, 0.0], "model": "fake-embed-3", "dimensions": 3, "chunk_count": 1, "truncated": False}
CLASSIFY_OUT = {"category": "Report", "confidence": 0.8, "tags": ["finance", "q3"], "language": "en", "summary": "Q3.", "model": "m"}
SPLIT_OUT = {"parts": [{"key": "a/split-p1-2.pdf"}, {"key": "a/split-p3-3.pdf"}]}


class _InterleavingStore(InMemoryDocumentStore):
    """Before the first CAS, another writer lands an EMBEDDING merge."""

    def __init__(self, documents, *, conflicts: int = 1) -> None:
        super().__init__(documents)
        self.conflicts = conflicts
        self.cas_calls = 0

    async def compare_and_swap(self, document_id, expected_version, representation):
        self.cas_calls += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            current = await self.get(document_id)
            rival = apply_output(current.representation, JobType.EMBEDDING, EMBED_OUT)
            await super().compare_and_swap(document_id, current.version, rival)
        return await super().compare_and_swap(document_id, expected_version, representation)


@pytest.mark.unit
class TestMergers:

    def test_every_job_type_has_a_merger(self):
        assert set(MERGERS) == set(JobType)

    def test_ocr_writes_text_fields_only(self):
        rep = apply_output(SearchableRepresentation(), JobType.OCR, OCR_OUT)
        assert rep.extracted_text == "Quarterly report"
        assert rep.page_count == 3
        assert rep.content_vector is None and rep.classification is None

    def test_embedding_writes_vector_and_model_together(self):
        rep = apply_output(SearchableRepresentation(), JobType.EMBEDDING, EMBED_OUT)
        assert rep.content_vector == (0.6, 0.8, 0.0)
        assert rep.embedding_model == "fake-embed-3"
        assert rep.is_embedded

    def test_classification_fields(self):
        rep = apply_output(SearchableRepresentation(), JobType.AI_CLASSIFY, CLASSIFY_OUT)
        assert rep.category == "Report"
        assert rep.classification_tags == ("finance", "q3")
        assert rep.summary == "Q3."

    def test_artifact_keys_replaced_not_appended(self):
        rep = apply_output(SearchableRepresentation(), JobType.PDF_SPLIT, SPLIT_OUT)
        rep = apply_output(rep, JobType.PDF_SPLIT, {"parts": [{"key": "a/split-p1-3.pdf"}]})
        assert rep.artifact_keys("PDF_SPLIT") == ("a/split-p1-3.pdf",)

    def test_merge_is_idempotent(self):
        once = apply_output(SearchableRepresentation(), JobType.AI_CLASSIFY, CLASSIFY_OUT)
        twice = apply_output(once, JobType.AI_CLASSIFY, CLASSIFY_OUT)
        assert once == twice

    def test_malformed_output_is_fatal(self):
        with pytest.raises(FatalError, match="Malformed EMBEDDING output"):
            apply_output(SearchableRepresentation(), JobType.EMBEDDING, {"model": "x"})


@pytest.mark.unit
class TestIndexCoordinator:

    async def test_merge_bumps_version(self, document_store, make_document):
        doc = make_document()
        written = await IndexCoordinator(document_store).merge(doc.id, JobType.OCR, OCR_OUT)

        assert written.version == doc.version + 1
        stored = await document_store.get(doc.id)
        assert stored.representation.extracted_text == "Quarterly report"

    async def test_duplicate_merge_skips_write(self, document_store, make_document):
        doc = make_document()
        coordinator = IndexCoordinator(document_store)
        await coordinator.merge(doc.id, JobType.OCR, OCR_OUT)
        first = await document_store.get(doc.id)

        again = await coordinator.merge(doc.id, JobType.OCR, OCR_OUT)

        assert again.version == first.version
        assert (await document_store.get(doc.id)).representation == first.representation

    async def test_conflict_rereads_and_keeps_rival_fields(self, make_document):
        doc = make_document()
        store = _InterleavingStore([doc], conflicts=1)

        await IndexCoordinator(store, max_attempts=3).merge(doc.id, JobType.OCR, OCR_OUT)

        rep = (await store.get(doc.id)).representation
        assert rep.extracted_text == "Quarterly report"
        assert rep.content_vector == (0.6, 0.8, 0.0)
        assert store.cas_calls == 2

    async def test_conflict_exhaustion_raises_retryable(self, make_document):
        doc = make_document()
        store = _InterleavingStore([doc], conflicts=10)

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            await IndexCoordinator(store, max_attempts=3).merge(doc.id, JobType.OCR, OCR_OUT)

        assert exc_info.value.retryable is True
        assert store.cas_calls == 3

    async def test_concurrent_merges_of_different_types_both_land(self, document_store, make_document):
        doc = make_document()
        coordinator = IndexCoordinator(document_store)

        await asyncio.gather(
            coordinator.merge(doc.id, JobType.OCR, OCR_OUT),
            coordinator.merge(doc.id, JobType.AI_CLASSIFY, CLASSIFY_OUT),
            coordinator.merge(doc.id, JobType.EMBEDDING, EMBED_OUT),
        )

        stored = await document_store.get(doc.id)
        assert stored.version == doc.version + 3
        assert stored.representation.extracted_text == "Quarterly report"
        assert stored.representation.category == "Report"
        assert stored.representation.is_embedded

    async def test_missing_document_is_fatal(self, document_store):
        with pytest.raises(FatalError, match="not found"):
            await IndexCoordinator(document_store).merge("ghost", JobType.OCR, OCR_OUT)

    async def test_upstream_fields_untouched(self, document_store, make_document):
        doc = make_document(name="Contract.pdf", tags=("legal",))
        await IndexCoordinator(document_store).merge(doc.id, JobType.AI_CLASSIFY, CLASSIFY_OUT)
        stored = await document_store.get(doc.id)
        assert replace(stored, representation=doc.representation, version=doc.version) == doc
