"""
Job State Machine — lifecycle and retry policy of a single ProcessingJob.

                 ┌──────────── cancel ────────────┐
                 │                                ▼
  PENDING ──lease──▶ RUNNING ──ok──────────▶ COMPLETED
     ▲    ▲            │  │ ──fatal / exhausted──▶ FAILED
     │    └─expired────┘  │
     │                    └─retryable──▶ RETRYING ──backoff──┐
     └───────────────────────────────────────────────────────┘

Terminal states (COMPLETED, FAILED, CANCELLED) accept no further transitions;
every attempt raises JobAlreadyFinalizedError.

Backoff: a job failing for the n-th time (retry_count = n - 1 before the
failure) waits min(base_ms * 2**(n - 1), cap_ms) in RETRYING.

All transitions mutate the job in place and take `now` explicitly so the
caller (the dispatcher) decides which clock is authoritative.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from docpipe.core.errors import (
    InvalidTransitionError,
    JobAlreadyFinalizedError,
    PipelineError,
)
from docpipe.jobs.types import JobStatus, ProcessingJob

logger = logging.getLogger(__name__)


_ALLOWED: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING:  frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING:  frozenset({
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.RETRYING,
        JobStatus.CANCELLED,
        JobStatus.PENDING,      # lease expired, requeued
    }),
    JobStatus.RETRYING: frozenset({JobStatus.PENDING, JobStatus.CANCELLED}),
}

UNKNOWN_ERROR_CODE = "UNKNOWN_ERROR"


@dataclass(frozen=True)
class RetryPolicy:
    base_ms: int = 2_000
    cap_ms:  int = 300_000

    def delay_ms(self, retry_count: int) -> int:
        """Backoff before the next attempt, given the retry count *before* this failure."""
        return min(self.base_ms * (2 ** retry_count), self.cap_ms)

    def delay(self, retry_count: int) -> timedelta:
        return timedelta(milliseconds=self.delay_ms(retry_count))


@dataclass(frozen=True)
class ErrorClassification:
    code:      str
    message:   str
    retryable: bool


def classify_error(exc: BaseException) -> ErrorClassification:
    """
    Map a handler exception onto (code, message, retryable).

    Domain errors carry their own classification. Timeouts and connection
    failures are transient. Anything else is unclassified and retried.
    """
    if isinstance(exc, PipelineError):
        return ErrorClassification(exc.code, exc.message, exc.retryable)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorClassification("TRANSIENT_ERROR", str(exc) or type(exc).__name__, True)
    return ErrorClassification(UNKNOWN_ERROR_CODE, str(exc) or type(exc).__name__, True)


class JobStateMachine:
    """Applies validated transitions to ProcessingJob instances."""

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        self.policy = policy or RetryPolicy()

    # -----------------------------------------------------------------------
    # Guards
    # -----------------------------------------------------------------------

    @staticmethod
    def ensure_not_terminal(job: ProcessingJob) -> None:
        if job.status.is_terminal:
            raise JobAlreadyFinalizedError(job.id, job.status.value)

    def _transition(self, job: ProcessingJob, target: JobStatus) -> None:
        self.ensure_not_terminal(job)
        if target not in _ALLOWED[job.status]:
            raise InvalidTransitionError(
                f"Job {job.id}: {job.status.value} -> {target.value} is not permitted"
            )
        logger.debug("Job transition | job=%s %s -> %s", job.id, job.status.value, target.value)
        job.status = target

    # -----------------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------------

    def start(self, job: ProcessingJob, *, worker_id: str, now: datetime, lease_until: datetime) -> None:
        """PENDING → RUNNING under a lease."""
        self._transition(job, JobStatus.RUNNING)
        job.worker_id = worker_id
        job.lease_expires_at = lease_until
        job.started_at = now
        job.next_attempt_at = None
        job.progress = 0

    def complete(self, job: ProcessingJob, output: dict[str, Any], *, now: datetime) -> None:
        """RUNNING → COMPLETED with outputData."""
        if job.status is not JobStatus.RUNNING:
            self.ensure_not_terminal(job)
            raise InvalidTransitionError(f"Job {job.id} is {job.status.value}, not RUNNING")
        self._transition(job, JobStatus.COMPLETED)
        job.output_data = output
        job.error_message = None
        job.error_code = None
        job.progress = 100
        job.completed_at = now
        self._release(job)

    def fail(self, job: ProcessingJob, error: BaseException, *, now: datetime) -> ErrorClassification:
        """
        RUNNING → RETRYING or FAILED.

        Retryable errors re-arm the job while another attempt is still allowed
        (retry_count + 1 < max_retries); the attempt that exhausts the budget
        fails the job with retry_count == max_retries. retry_count never
        exceeds max_retries.
        """
        if job.status is not JobStatus.RUNNING:
            self.ensure_not_terminal(job)
            raise InvalidTransitionError(f"Job {job.id} is {job.status.value}, not RUNNING")

        info = classify_error(error)
        job.last_error = f"{info.code}: {info.message}"

        if info.retryable and job.retry_count + 1 < job.max_retries:
            delay = self.policy.delay(job.retry_count)
            self._transition(job, JobStatus.RETRYING)
            job.retry_count += 1
            job.next_attempt_at = now + delay
            self._release(job)
            logger.warning(
                "Job retry scheduled | job=%s attempt=%d/%d delay_ms=%d code=%s",
                job.id, job.retry_count, job.max_retries,
                int(delay.total_seconds() * 1000), info.code,
            )
            return info

        self._transition(job, JobStatus.FAILED)
        job.error_message = info.message
        job.error_code = info.code
        if info.retryable:
            job.retry_count = min(job.retry_count + 1, job.max_retries)
        job.completed_at = now
        self._release(job)
        return info

    def begin_commit(self, job: ProcessingJob, *, now: datetime) -> None:
        """
        Mark a RUNNING job as merging its output. From here until the ack the
        job can no longer be cancelled.
        """
        if job.status is not JobStatus.RUNNING:
            self.ensure_not_terminal(job)
            raise InvalidTransitionError(f"Job {job.id} is {job.status.value}, not RUNNING")
        job.commit_started_at = now

    def cancel(self, job: ProcessingJob, *, now: datetime, reason: str | None = None) -> None:
        """PENDING / RUNNING / RETRYING → CANCELLED. errorMessage stays null."""
        self.ensure_not_terminal(job)
        if job.commit_started_at is not None:
            raise InvalidTransitionError(
                f"Job {job.id} is already committing its output and can no longer be cancelled"
            )
        self._transition(job, JobStatus.CANCELLED)
        job.cancel_reason = reason
        job.completed_at = now
        job.next_attempt_at = None
        self._release(job)

    def promote(self, job: ProcessingJob) -> None:
        """RETRYING → PENDING once the backoff has elapsed."""
        self._transition(job, JobStatus.PENDING)
        job.next_attempt_at = None

    def requeue(self, job: ProcessingJob) -> None:
        """RUNNING → PENDING after the lease expired without an ack."""
        self._transition(job, JobStatus.PENDING)
        self._release(job)

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _release(job: ProcessingJob) -> None:
        job.worker_id = None
        job.lease_expires_at = None
        job.commit_started_at = None
