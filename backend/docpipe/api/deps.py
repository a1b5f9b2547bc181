"""
FastAPI dependencies that hand route handlers their services.

The Runtime is built once in the app lifespan and stored on `app.state`;
tests swap it by assigning their own Runtime before issuing requests.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from docpipe.runtime import Runtime
from docpipe.services.processing import ProcessingService
from docpipe.services.search import SearchService


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_processing_service(runtime: Annotated[Runtime, Depends(get_runtime)]) -> ProcessingService:
    return runtime.processing


def get_search_service(runtime: Annotated[Runtime, Depends(get_runtime)]) -> SearchService:
    return runtime.search


ProcessingServiceDep = Annotated[ProcessingService, Depends(get_processing_service)]
SearchServiceDep = Annotated[SearchService, Depends(get_search_service)]
