"""
Error taxonomy for the processing pipeline and the search engine.

Every domain error carries:
  code       — stable machine-readable identifier (surfaced to API clients)
  retryable  — whether the caller / dispatcher may try again later

The dispatcher only looks at `retryable` to choose between RETRYING and
FAILED; the HTTP layer maps `code` to a status code.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all domain errors."""

    code: str = "PIPELINE_ERROR"
    retryable: bool = False

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


# ---------------------------------------------------------------------------
# Request-time errors
# ---------------------------------------------------------------------------

class ValidationError(PipelineError):
    """Malformed inputParams or search query. Never enqueued, never retried."""
    code = "VALIDATION_ERROR"


class NotFoundError(PipelineError):
    code = "NOT_FOUND"


class PersistenceUnavailableError(PipelineError):
    """The data store could not be reached."""
    code = "PERSISTENCE_UNAVAILABLE"
    retryable = True


# ---------------------------------------------------------------------------
# Dispatcher / state machine
# ---------------------------------------------------------------------------

class DuplicateActiveJobError(PipelineError):
    code = "DUPLICATE_ACTIVE_JOB"

    def __init__(self, document_id: str, job_type: str, active_job_id: str | None = None) -> None:
        super().__init__(
            f"A {job_type} job is already active for document {document_id}"
            + (f" (job {active_job_id})" if active_job_id else "")
        )
        self.document_id = document_id
        self.job_type = job_type
        self.active_job_id = active_job_id


class JobAlreadyFinalizedError(PipelineError):
    code = "JOB_ALREADY_FINALIZED"

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(f"Job {job_id} is already {status}")
        self.job_id = job_id
        self.status = status


class InvalidTransitionError(PipelineError):
    code = "INVALID_TRANSITION"


class LeaseExpiredError(PipelineError):
    """The worker no longer holds the lease (it expired and the job was requeued)."""
    code = "LEASE_EXPIRED"


# ---------------------------------------------------------------------------
# Handler errors
# ---------------------------------------------------------------------------

class TransientError(PipelineError):
    """Downstream service or storage temporarily unavailable."""
    code = "TRANSIENT_ERROR"
    retryable = True


class FatalError(PipelineError):
    """Unsupported format, corrupt content, invalid job for the document."""
    code = "FATAL_ERROR"


class QuotaExceededError(FatalError):
    """Fatal, but surfaced with its own code so callers can prompt an upgrade."""
    code = "QUOTA_EXCEEDED"


class CancellationRequested(PipelineError):
    """Raised at a handler checkpoint once the job has been cancelled."""
    code = "CANCELLED"


# ---------------------------------------------------------------------------
# Index coordinator / search
# ---------------------------------------------------------------------------

class ConcurrentUpdateError(PipelineError):
    """Optimistic-concurrency retries exhausted; the dispatcher retries the job."""
    code = "CONCURRENT_UPDATE"
    retryable = True


class SemanticServiceUnavailable(PipelineError):
    """The query embedding service failed; hybrid search degrades to lexical."""
    code = "SEMANTIC_UNAVAILABLE"
    retryable = True
