"""
Document-side types owned by the Search Index Coordinator.

SearchableRepresentation is immutable: a merge builds a new instance with one
job type's field set replaced and swaps it in as a whole, so readers never see
a half-applied merge (e.g. a vector without its embedding model).

Nothing in the representation is time-dependent, so merging the same output
twice produces an equal value.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Classification:
    category:   str
    confidence: float
    tags:       tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"category": self.category, "confidence": self.confidence, "tags": list(self.tags)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Classification | None":
        if not data:
            return None
        return cls(
            category=data["category"],
            confidence=float(data.get("confidence", 0.0)),
            tags=tuple(data.get("tags") or ()),
        )


@dataclass(frozen=True)
class SearchableRepresentation:
    # OCR
    extracted_text: str | None = None
    page_count:     int | None = None
    ocr_confidence: float | None = None
    ocr_method:     str | None = None

    # EMBEDDING: vector and model are always written together
    content_vector:  tuple[float, ...] | None = None
    embedding_model: str | None = None

    # AI_CLASSIFY
    classification: Classification | None = None
    language:       str | None = None
    summary:        str | None = None

    # THUMBNAIL
    thumbnail_key: str | None = None

    # PDF_SPLIT / PDF_MERGE / CONVERT / COMPRESS: artifact keys per job type
    artifacts: tuple[tuple[str, tuple[str, ...]], ...] = ()

    @property
    def has_text(self) -> bool:
        return bool(self.extracted_text and self.extracted_text.strip())

    @property
    def is_embedded(self) -> bool:
        return self.content_vector is not None and self.embedding_model is not None

    @property
    def category(self) -> str | None:
        return self.classification.category if self.classification else None

    @property
    def classification_tags(self) -> tuple[str, ...]:
        return self.classification.tags if self.classification else ()

    def artifact_keys(self, job_type: str) -> tuple[str, ...]:
        return dict(self.artifacts).get(job_type, ())

    def with_artifacts(self, job_type: str, keys: list[str] | tuple[str, ...]) -> "SearchableRepresentation":
        merged = dict(self.artifacts)
        merged[job_type] = tuple(keys)
        return replace(self, artifacts=tuple(sorted(merged.items())))

    def to_dict(self) -> dict[str, Any]:
        return {
            "extractedText":  self.extracted_text,
            "pageCount":      self.page_count,
            "ocrConfidence":  self.ocr_confidence,
            "ocrMethod":      self.ocr_method,
            "contentVector":  list(self.content_vector) if self.content_vector is not None else None,
            "embeddingModel": self.embedding_model,
            "classification": self.classification.to_dict() if self.classification else None,
            "language":       self.language,
            "summary":        self.summary,
            "thumbnailKey":   self.thumbnail_key,
            "artifacts":      {k: list(v) for k, v in self.artifacts},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SearchableRepresentation":
        if not data:
            return cls()
        vector = data.get("contentVector")
        return cls(
            extracted_text=data.get("extractedText"),
            page_count=data.get("pageCount"),
            ocr_confidence=data.get("ocrConfidence"),
            ocr_method=data.get("ocrMethod"),
            content_vector=tuple(float(x) for x in vector) if vector is not None else None,
            embedding_model=data.get("embeddingModel"),
            classification=Classification.from_dict(data.get("classification")),
            language=data.get("language"),
            summary=data.get("summary"),
            thumbnail_key=data.get("thumbnailKey"),
            artifacts=tuple(sorted(
                (k, tuple(v)) for k, v in (data.get("artifacts") or {}).items()
            )),
        )


@dataclass(frozen=True)
class DocumentSnapshot:
    """
    A document as seen by the pipeline and the search engine.

    Everything except `representation` and `version` is owned by the
    document CRUD service upstream and is read-only here.
    """

    id:                str
    organization_id:   str
    name:              str
    mime_type:         str
    size_bytes:        int = 0
    status:            str = "ACTIVE"
    processing_status: str = "PENDING"
    folder_id:         str | None = None
    folder_path:       tuple[str, ...] = ()      # ancestor folder ids, root first, own folder last
    tags:              tuple[str, ...] = ()
    created_by_id:     str | None = None
    created_at:        datetime | None = None
    updated_at:        datetime | None = None
    storage_key:       str | None = None
    representation:    SearchableRepresentation = field(default_factory=SearchableRepresentation)
    version:           int = 0

    @property
    def all_tags(self) -> tuple[str, ...]:
        """User tags plus AI classification tags, de-duplicated, order preserved."""
        seen: dict[str, None] = {}
        for tag in (*self.tags, *self.representation.classification_tags):
            seen.setdefault(tag, None)
        return tuple(seen)

    def in_folder(self, folder_id: str, include_subfolders: bool) -> bool:
        if self.folder_id == folder_id:
            return True
        return include_subfolders and folder_id in self.folder_path
