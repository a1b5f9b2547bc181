"""
Search API — tenant-scoped document search

POST /api/v1/search            → fulltext / semantic / hybrid by `mode`
POST /api/v1/search/semantic   → vector similarity with threshold
POST /api/v1/search/hybrid     → weighted lexical + semantic blend
GET  /api/v1/search/suggest    → autocomplete for a partial query

Responses carry tookMs, facets, suggestions (on empty results) and a meta
block whose `warnings` list says when hybrid search degraded to lexical.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from docpipe.api.deps import SearchServiceDep
from docpipe.auth.tenant import CurrentTenant
from docpipe.schemas.search import (
    HybridSearchRequest,
    SearchRequest,
    SemanticSearchRequest,
    SuggestResponse,
)
from docpipe.search.query import SearchResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["Search"])


@router.post("", response_model=SearchResponse, response_model_by_alias=True, summary="Search documents")
async def search(body: SearchRequest, tenant: CurrentTenant, service: SearchServiceDep) -> SearchResponse:
    return await service.search(
        tenant,
        body.query,
        body.mode,
        body.filters,
        limit=body.limit,
        offset=body.offset,
        include_facets=body.include_facets,
    )


@router.post(
    "/semantic",
    response_model=SearchResponse,
    response_model_by_alias=True,
    summary="Semantic (vector similarity) search",
)
async def semantic_search(
    body: SemanticSearchRequest, tenant: CurrentTenant, service: SearchServiceDep,
) -> SearchResponse:
    return await service.semantic_search(
        tenant,
        body.query,
        limit=body.limit,
        threshold=body.threshold,
        filters=body.filters,
        rerank=body.rerank,
    )


@router.post(
    "/hybrid",
    response_model=SearchResponse,
    response_model_by_alias=True,
    summary="Hybrid lexical + semantic search",
)
async def hybrid_search(
    body: HybridSearchRequest, tenant: CurrentTenant, service: SearchServiceDep,
) -> SearchResponse:
    return await service.hybrid_search(
        tenant,
        body.query,
        text_weight=body.text_weight,
        semantic_weight=body.semantic_weight,
        threshold=body.threshold,
        filters=body.filters,
        rerank=body.rerank,
        limit=body.limit,
        offset=body.offset,
    )


@router.get("/suggest", response_model=SuggestResponse, summary="Autocomplete suggestions")
async def suggest(
    tenant: CurrentTenant,
    service: SearchServiceDep,
    q: str = Query(..., max_length=200, description="Partial query"),
    limit: int = Query(10, ge=1, le=20),
) -> SuggestResponse:
    return SuggestResponse(suggestions=await service.suggest(tenant, q, limit))
