"""
Search request / response models.

A SearchQuery is ephemeral: built per request, validated on construction,
never persisted. Field names are snake_case in Python and camelCase on the
wire (alias generator), so the same models serve the HTTP layer.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from docpipe.core.errors import ValidationError

MAX_QUERY_LENGTH = 1_000
MAX_LIMIT = 100


class SearchMode(str, Enum):
    FULLTEXT = "fulltext"
    SEMANTIC = "semantic"
    HYBRID   = "hybrid"


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class DateRange(_Model):
    from_: datetime | None = Field(None, alias="from")
    to:    datetime | None = None

    @field_validator("from_", "to")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.from_ and self.to and self.from_ > self.to:
            raise ValueError("'from' must not be after 'to'")
        return self

    def contains(self, value: datetime | None) -> bool:
        if value is None:
            return self.from_ is None and self.to is None
        value = _as_utc(value)
        if self.from_ is not None and value < self.from_:
            return False
        if self.to is not None and value > self.to:
            return False
        return True


def _as_utc(value: datetime) -> datetime:
    """Timestamps without an offset are taken as UTC."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class SizeRange(_Model):
    min: int | None = Field(None, ge=0)
    max: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def _ordered(self) -> "SizeRange":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("'min' must not exceed 'max'")
        return self

    def contains(self, value: int) -> bool:
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


class SearchFilters(_Model):
    folder_id:          str | None       = None
    include_subfolders: bool             = True
    mime_types:         list[str] | None = None
    statuses:           list[str] | None = None
    categories:         list[str] | None = None
    tags:               list[str] | None = Field(None, description="Document must carry every tag")
    tags_any:           list[str] | None = Field(None, description="Document must carry at least one tag")
    created_by_id:      str | None       = None
    created_at:         DateRange | None = None
    updated_at:         DateRange | None = None
    size_bytes:         SizeRange | None = None
    include_ids:        list[str] | None = None
    exclude_ids:        list[str] | None = None


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------

class SearchQuery(_Model):
    organization_id: str
    query:           str        = Field(..., max_length=MAX_QUERY_LENGTH)
    mode:            SearchMode = SearchMode.FULLTEXT
    filters:         SearchFilters = Field(default_factory=SearchFilters)
    limit:           int   = Field(20, ge=1, le=MAX_LIMIT)
    offset:          int   = Field(0, ge=0)
    text_weight:     float = Field(0.3, ge=0)
    semantic_weight: float = Field(0.7, ge=0)
    threshold:       float = Field(0.7, ge=0, le=1)
    rerank:          bool  = False
    include_facets:  bool  = True

    @model_validator(mode="after")
    def _check(self) -> "SearchQuery":
        if not self.query.strip():
            raise ValueError("query must not be blank")
        if self.mode is SearchMode.HYBRID and self.text_weight == 0 and self.semantic_weight == 0:
            raise ValueError("at least one of textWeight / semanticWeight must be positive")
        return self

    @classmethod
    def build(cls, **fields: Any) -> "SearchQuery":
        """Construct, translating pydantic errors into the pipeline's ValidationError."""
        try:
            return cls(**fields)
        except PydanticValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'query'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ValidationError(f"Invalid search query: {errors}") from exc


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------

class SearchResult(_Model):
    id:             str
    name:           str
    mime_type:      str
    size_bytes:     int
    folder_id:      str | None
    category:       str | None
    tags:           list[str]
    created_at:     datetime | None
    updated_at:     datetime | None
    snippet:        str | None = None
    score:          float
    text_score:     float | None = None
    semantic_score: float | None = None
    rerank_score:   float | None = None


class Facets(_Model):
    mime_types: dict[str, int] = Field(default_factory=dict)
    categories: dict[str, int] = Field(default_factory=dict)
    tags:       dict[str, int] = Field(default_factory=dict)


class SearchMeta(_Model):
    mode:            SearchMode
    text_weight:     float | None = None
    semantic_weight: float | None = None
    threshold:       float | None = None
    reranked:        bool = False
    warnings:        list[str] = Field(default_factory=list)


class SearchResponse(_Model):
    results:     list[SearchResult]
    total:       int
    took_ms:     int
    truncated:   bool = False
    facets:      Facets | None = None
    suggestions: list[str] | None = None
    meta:        SearchMeta
