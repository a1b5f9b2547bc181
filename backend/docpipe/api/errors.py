"""
Domain error → HTTP response mapping.

Route handlers never catch PipelineError; one exception handler turns it into
the uniform ErrorResponse envelope:

  ValidationError                                  → 422
  NotFoundError                                    → 404
  DuplicateActiveJob / AlreadyFinalized / InvalidTransition → 409
  any retryable error                              → 503
  anything else                                    → 400
"""

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docpipe.core.errors import (
    DuplicateActiveJobError,
    InvalidTransitionError,
    JobAlreadyFinalizedError,
    NotFoundError,
    PipelineError,
    ValidationError,
)
from docpipe.schemas.common import ErrorBody, ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

_STATUS_BY_TYPE: tuple[tuple[type[PipelineError], int], ...] = (
    (ValidationError,          status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError,            status.HTTP_404_NOT_FOUND),
    (DuplicateActiveJobError,  status.HTTP_409_CONFLICT),
    (JobAlreadyFinalizedError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError,   status.HTTP_409_CONFLICT),
)


def status_for(exc: PipelineError) -> int:
    for exc_type, code in _STATUS_BY_TYPE:
        if isinstance(exc, exc_type):
            return code
    if exc.retryable:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


def _respond(request: Request, status_code: int, body: ErrorBody) -> JSONResponse:
    payload = ErrorResponse(error=body, request_id=request.headers.get("X-Request-ID"))
    return JSONResponse(status_code=status_code, content=payload.model_dump(mode="json"))


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.warning("Request failed | path=%s code=%s error=%s", request.url.path, exc.code, exc.message)
        return _respond(
            request, status_code,
            ErrorBody(code=exc.code, message=exc.message, retryable=exc.retryable),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, dict):
            code = exc.detail.get("code", "HTTP_ERROR")
            message = exc.detail.get("message", "")
        else:
            code, message = "HTTP_ERROR", str(exc.detail)
        return _respond(request, exc.status_code, ErrorBody(code=code, message=message))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic/FastAPI validation errors to the same envelope."""
        details = [
            ErrorDetail(
                field=".".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
            )
            for err in exc.errors()
        ]
        return _respond(
            request, status.HTTP_422_UNPROCESSABLE_ENTITY,
            ErrorBody(code="VALIDATION_ERROR", message="Request validation failed.", details=details),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        payload = ErrorResponse(
            error=ErrorBody(code="INTERNAL_ERROR", message="An unexpected error occurred."),
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=payload.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )
