"""
Handler contract.

    process(document, params, ctx) -> HandlerOutput | raises

A handler is a pure transform from (document content, validated params) to a
typed output. It never writes document state itself; the worker hands the
output to the Index Coordinator. The only side effect a handler may have is
writing derived artifacts under deterministic keys, so a second run of the
same attempt overwrites rather than duplicates.

Handlers must call `await ctx.checkpoint(progress)` between expensive steps.
The checkpoint extends the job's lease and raises CancellationRequested once
the job was cancelled.

Error classification (what the dispatcher sees):
  TransientError      provider/storage temporarily unavailable → retried
  FatalError          unsupported / corrupt input → failed immediately
  QuotaExceededError  billing quota hit → failed immediately, distinct code
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, ClassVar, Generic, TypeVar

import httpx
import openai
from pydantic import BaseModel

from docpipe.core.errors import (
    FatalError,
    PipelineError,
    QuotaExceededError,
    TransientError,
)
from docpipe.indexing.types import DocumentSnapshot
from docpipe.jobs.types import JobType, ProcessingJob
from docpipe.processing.outputs import HandlerOutput

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)

SERVICE_NOT_CONFIGURED = "SERVICE_NOT_CONFIGURED"


class JobContext:
    """Per-attempt handle a handler uses to report progress and observe cancellation."""

    def __init__(
        self,
        job: ProcessingJob,
        heartbeat: Callable[[int | None], Awaitable[None]],
    ) -> None:
        self.job = job
        self._heartbeat = heartbeat
        self.progress = 0

    @property
    def job_id(self) -> str:
        return self.job.id

    async def checkpoint(self, progress: int | None = None) -> None:
        """Extend the lease, record progress; raises CancellationRequested if cancelled."""
        if progress is not None:
            self.progress = progress
        await self._heartbeat(progress)


class ProcessingHandler(ABC, Generic[P]):
    job_type: ClassVar[JobType]

    @abstractmethod
    async def process(self, document: DocumentSnapshot, params: P, ctx: JobContext) -> HandlerOutput:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} job_type={self.job_type.value}>"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def require_text(document: DocumentSnapshot) -> str:
    """Extracted text, or a FatalError telling the caller to run OCR first."""
    if not document.representation.has_text:
        raise FatalError(f"Document {document.id} has no extracted text. Run OCR first.")
    return document.representation.extracted_text or ""


def require_configured(value: str, service: str) -> str:
    if not value:
        raise FatalError(f"{service} is not configured", code=SERVICE_NOT_CONFIGURED)
    return value


def classify_provider_error(exc: Exception, service: str) -> PipelineError:
    """
    Translate an OpenAI / HTTP client failure into the pipeline taxonomy.

    Rate limits, 5xx and network problems are transient. An exhausted billing
    quota surfaces as QuotaExceededError. Auth and request errors are fatal:
    retrying them would fail the same way.
    """
    if isinstance(exc, PipelineError):
        return exc

    if isinstance(exc, openai.RateLimitError):
        body = exc.body if isinstance(exc.body, dict) else {}
        if body.get("code") == "insufficient_quota" or "quota" in str(exc).lower():
            return QuotaExceededError(f"{service} quota exceeded: {exc}")
        return TransientError(f"{service} rate limited: {exc}")
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, openai.InternalServerError)):
        return TransientError(f"{service} unavailable: {exc}")
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code == 402:
            return QuotaExceededError(f"{service} payment required: {exc}")
        if exc.status_code >= 500:
            return TransientError(f"{service} error {exc.status_code}: {exc}")
        return FatalError(f"{service} rejected the request ({exc.status_code}): {exc}")

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 402:
            return QuotaExceededError(f"{service} payment required")
        if status == 429 or status >= 500:
            return TransientError(f"{service} returned {status}")
        return FatalError(f"{service} rejected the request ({status})")
    if isinstance(exc, httpx.TransportError):
        return TransientError(f"{service} unreachable: {exc}")

    return TransientError(f"{service} failed: {type(exc).__name__}: {exc}")
