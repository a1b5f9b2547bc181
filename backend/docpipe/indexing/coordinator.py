"""
Search Index Coordinator — merges handler output into a document's
SearchableRepresentation.

Each job type owns a disjoint field set; a merge replaces that field set and
nothing else (replace-by-field, never append), which makes the merge
idempotent and lets concurrent jobs of different types for the same document
both land.

Concurrency: optimistic. The coordinator reads the document with its version,
builds the merged representation, and writes it with compare-and-swap. On a
version conflict it re-reads and re-merges, up to `max_attempts` times, then
raises ConcurrentUpdateError (retryable, so the dispatcher retries the job).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable

from docpipe.core.errors import ConcurrentUpdateError, FatalError
from docpipe.indexing.store import DocumentStore
from docpipe.indexing.types import Classification, DocumentSnapshot, SearchableRepresentation
from docpipe.jobs.types import JobType
from docpipe.observability.tracing import traced

logger = logging.getLogger(__name__)

Merger = Callable[[SearchableRepresentation, dict[str, Any]], SearchableRepresentation]


# ---------------------------------------------------------------------------
# Per-type field sets
# ---------------------------------------------------------------------------

def _merge_ocr(rep: SearchableRepresentation, out: dict[str, Any]) -> SearchableRepresentation:
    return replace(
        rep,
        extracted_text=out["text"],
        page_count=out.get("page_count"),
        ocr_confidence=out.get("confidence"),
        ocr_method=out.get("method"),
    )


def _merge_embedding(rep: SearchableRepresentation, out: dict[str, Any]) -> SearchableRepresentation:
    return replace(
        rep,
        content_vector=tuple(float(x) for x in out["vector"]),
        embedding_model=out["model"],
    )


def _merge_classification(rep: SearchableRepresentation, out: dict[str, Any]) -> SearchableRepresentation:
    return replace(
        rep,
        classification=Classification(
            category=out["category"],
            confidence=float(out.get("confidence", 0.0)),
            tags=tuple(out.get("tags") or ()),
        ),
        language=out.get("language"),
        summary=out.get("summary"),
    )


def _merge_thumbnail(rep: SearchableRepresentation, out: dict[str, Any]) -> SearchableRepresentation:
    return replace(rep, thumbnail_key=out["artifact"]["key"])


def _artifact_merger(job_type: JobType) -> Merger:
    def _merge(rep: SearchableRepresentation, out: dict[str, Any]) -> SearchableRepresentation:
        if "parts" in out:
            keys = [part["key"] for part in out["parts"]]
        else:
            keys = [out["artifact"]["key"]]
        return rep.with_artifacts(job_type.value, keys)
    return _merge


MERGERS: dict[JobType, Merger] = {
    JobType.OCR:         _merge_ocr,
    JobType.EMBEDDING:   _merge_embedding,
    JobType.AI_CLASSIFY: _merge_classification,
    JobType.THUMBNAIL:   _merge_thumbnail,
    JobType.PDF_SPLIT:   _artifact_merger(JobType.PDF_SPLIT),
    JobType.PDF_MERGE:   _artifact_merger(JobType.PDF_MERGE),
    JobType.CONVERT:     _artifact_merger(JobType.CONVERT),
    JobType.COMPRESS:    _artifact_merger(JobType.COMPRESS),
}

_missing = set(JobType) - set(MERGERS)
if _missing:
    raise RuntimeError(f"No index merger for job types: {sorted(t.value for t in _missing)}")


def apply_output(
    rep: SearchableRepresentation, job_type: JobType, output: dict[str, Any],
) -> SearchableRepresentation:
    """Pure merge of one job type's output into a representation."""
    try:
        return MERGERS[job_type](rep, output)
    except (KeyError, TypeError, ValueError) as exc:
        raise FatalError(f"Malformed {job_type.value} output: {exc}") from exc


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class IndexCoordinator:

    def __init__(self, store: DocumentStore, *, max_attempts: int = 3) -> None:
        self.store = store
        self.max_attempts = max(1, max_attempts)

    @traced("index.merge")
    async def merge(
        self, document_id: str, job_type: JobType, output: dict[str, Any],
    ) -> DocumentSnapshot:
        """
        Read-merge-CAS loop.

        Returns the document as written (or as read, when the merge was a
        no-op because the same output had already been applied).

        Raises:
            FatalError:             the document no longer exists / output malformed.
            ConcurrentUpdateError:  every attempt lost the version race.
        """
        for attempt in range(1, self.max_attempts + 1):
            doc = await self.store.get(document_id)
            if doc is None:
                raise FatalError(f"Document {document_id} not found")

            merged = apply_output(doc.representation, job_type, output)
            if merged == doc.representation:
                logger.debug("Index merge no-op | doc=%s type=%s", document_id, job_type.value)
                return doc

            if await self.store.compare_and_swap(document_id, doc.version, merged):
                logger.info(
                    "Index merged | doc=%s type=%s version=%d attempt=%d",
                    document_id, job_type.value, doc.version + 1, attempt,
                )
                return replace(doc, representation=merged, version=doc.version + 1)

            logger.debug(
                "Index version conflict | doc=%s type=%s version=%d attempt=%d/%d",
                document_id, job_type.value, doc.version, attempt, self.max_attempts,
            )

        logger.warning(
            "Index merge gave up | doc=%s type=%s attempts=%d",
            document_id, job_type.value, self.max_attempts,
        )
        raise ConcurrentUpdateError(
            f"Could not merge {job_type.value} output into document {document_id} "
            f"after {self.max_attempts} attempts"
        )
