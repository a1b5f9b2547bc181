"""
Shared API schemas — the uniform error envelope.

Every 4xx/5xx body has the same shape:

    {"error": {"code": "DUPLICATE_ACTIVE_JOB", "message": "...", "retryable": false}}

Clients branch on `code`; `retryable` tells them whether trying the same
request later can succeed.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Single field-level problem, only present for request validation failures."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str


class ErrorBody(BaseModel):
    code:      str  = Field(..., description="Stable machine-readable code")
    message:   str  = Field(..., description="Human-readable summary")
    retryable: bool = False
    details:   list[ErrorDetail] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error:      ErrorBody
    request_id: str | None = Field(None, description="Trace ID for log correlation")
