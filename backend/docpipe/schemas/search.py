"""
Search API — request bodies.

Responses reuse docpipe.search.query.SearchResponse directly; filters reuse
SearchFilters, so the wire format of both is defined in one place.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from docpipe.search.query import MAX_LIMIT, MAX_QUERY_LENGTH, SearchFilters, SearchMode


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchRequest(_ApiModel):
    query:          str = Field(..., max_length=MAX_QUERY_LENGTH, examples=["quarterly invoice"])
    mode:           SearchMode = SearchMode.FULLTEXT
    filters:        SearchFilters = Field(default_factory=SearchFilters)
    limit:          int | None = Field(None, ge=1, le=MAX_LIMIT)
    offset:         int = Field(0, ge=0)
    include_facets: bool = True


class SemanticSearchRequest(_ApiModel):
    query:     str = Field(..., max_length=MAX_QUERY_LENGTH)
    limit:     int = Field(10, ge=1, le=MAX_LIMIT)
    threshold: float | None = Field(None, ge=0.0, le=1.0)
    filters:   SearchFilters = Field(default_factory=SearchFilters)
    rerank:    bool = False


class HybridSearchRequest(_ApiModel):
    query:           str = Field(..., max_length=MAX_QUERY_LENGTH)
    text_weight:     float | None = Field(None, ge=0.0)
    semantic_weight: float | None = Field(None, ge=0.0)
    threshold:       float | None = Field(None, ge=0.0, le=1.0)
    filters:         SearchFilters = Field(default_factory=SearchFilters)
    rerank:          bool = False
    limit:           int | None = Field(None, ge=1, le=MAX_LIMIT)
    offset:          int = Field(0, ge=0)


class SuggestResponse(_ApiModel):
    suggestions: list[str]
