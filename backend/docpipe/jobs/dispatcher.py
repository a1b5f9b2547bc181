"""
Job Queue Dispatcher — enqueue, lease, heartbeat, cancel, ack.

The dispatcher is the only writer of ProcessingJob records. It owns:
  - an injectable Clock (lease expiry, retry backoff)
  - an injectable id factory
  - the JobStateMachine (all status changes go through it)
  - a JobStore (atomic modify / acquire primitives)

Lease mechanism — polling with heartbeats:
  Workers call lease(worker_id) in a loop. A lease is valid for
  `lease_seconds`; handlers extend it at every checkpoint through
  heartbeat(). Before handing out work, lease() promotes RETRYING jobs whose
  backoff elapsed and requeues RUNNING jobs whose lease expired, so a single
  process needs no separate timer. Multi-process deployments additionally run
  the same sweep from Celery Beat (docpipe.workers.tasks).

Guarantees:
  - at most one PENDING/RUNNING/RETRYING job per (document_id, job_type)
  - at-least-once execution (expired leases are requeued)
  - any call against a terminal job raises JobAlreadyFinalizedError
  - a cancelled job never merges output: cancel and begin_commit are
    serialised by the store, and cancel is refused once a commit started
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from docpipe.core.clock import Clock, SystemClock
from docpipe.core.errors import (
    CancellationRequested,
    LeaseExpiredError,
    NotFoundError,
)
from docpipe.jobs.state_machine import JobStateMachine
from docpipe.jobs.store import JobStore
from docpipe.jobs.types import (
    DEFAULT_PRIORITIES,
    JobOutcome,
    JobPriority,
    JobStatus,
    JobType,
    ProcessingJob,
    QueueStats,
)
from docpipe.notifications import (
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_STARTED,
    LoggingNotifier,
    Notifier,
)
from docpipe.processing.params import validate_params

logger = logging.getLogger(__name__)


def _uuid4() -> str:
    return str(uuid.uuid4())


class JobDispatcher:

    def __init__(
        self,
        store: JobStore,
        *,
        clock: Clock | None = None,
        id_factory: Callable[[], str] = _uuid4,
        state_machine: JobStateMachine | None = None,
        notifier: Notifier | None = None,
        lease_seconds: float = 300,
        default_max_retries: int = 3,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.state_machine = state_machine or JobStateMachine()
        self._new_id = id_factory
        self._notifier = notifier or LoggingNotifier()
        self._lease = timedelta(seconds=lease_seconds)
        self._default_max_retries = default_max_retries

    # -----------------------------------------------------------------------
    # Enqueue
    # -----------------------------------------------------------------------

    async def enqueue(
        self,
        document_id: str,
        job_type: JobType,
        input_params: dict[str, Any] | None = None,
        priority: JobPriority | None = None,
        *,
        organization_id: str,
        created_by_id: str | None = None,
        max_retries: int | None = None,
    ) -> str:
        """
        Validate params and create a PENDING job.

        Raises:
            ValidationError:          inputParams don't match the job type's schema.
            DuplicateActiveJobError:  a job for (document_id, job_type) is still active.
        """
        params = validate_params(job_type, input_params)

        job = ProcessingJob(
            id=self._new_id(),
            document_id=document_id,
            organization_id=organization_id,
            job_type=job_type,
            priority=priority or DEFAULT_PRIORITIES[job_type],
            input_params=params,
            max_retries=self._default_max_retries if max_retries is None else max_retries,
            created_at=self.clock.now(),
            created_by_id=created_by_id,
        )
        await self.store.insert(job)

        logger.info(
            "Job enqueued | job=%s doc=%s type=%s priority=%s",
            job.id, document_id, job_type.value, job.priority.value,
        )
        return job.id

    # -----------------------------------------------------------------------
    # Lease / heartbeat
    # -----------------------------------------------------------------------

    async def lease(self, worker_id: str) -> ProcessingJob | None:
        """Claim the highest-priority PENDING job (FIFO within a priority)."""
        await self.reap()

        now = self.clock.now()

        def _start(job: ProcessingJob) -> None:
            self.state_machine.start(
                job, worker_id=worker_id, now=now, lease_until=now + self._lease,
            )

        job = await self.store.acquire_next(now, _start)
        if job is None:
            return None

        logger.info(
            "Job leased | job=%s worker=%s type=%s attempt=%d",
            job.id, worker_id, job.job_type.value, job.retry_count + 1,
        )
        self._emit(JOB_STARTED, job)
        return job

    async def heartbeat(
        self,
        job_id: str,
        worker_id: str,
        *,
        progress: int | None = None,
    ) -> ProcessingJob:
        """
        Extend the lease and record progress.

        Raises:
            CancellationRequested:     the job was cancelled; the handler must stop.
            JobAlreadyFinalizedError:  the job reached another terminal state.
            LeaseExpiredError:         this worker no longer owns the job.
        """
        now = self.clock.now()

        def _extend(job: ProcessingJob) -> None:
            if job.status is JobStatus.CANCELLED:
                raise CancellationRequested(f"Job {job.id} was cancelled")
            self.state_machine.ensure_not_terminal(job)
            self._ensure_lease_holder(job, worker_id)
            if job.lease_expires_at is not None and job.lease_expires_at <= now:
                raise LeaseExpiredError(f"Lease on job {job.id} expired at {job.lease_expires_at}")
            job.lease_expires_at = now + self._lease
            if progress is not None:
                job.progress = max(0, min(100, int(progress)))

        job, _ = await self.store.modify(job_id, _extend)
        return job

    async def begin_commit(
        self,
        job_id: str,
        worker_id: str,
        *,
        progress: int | None = None,
    ) -> ProcessingJob:
        """
        Last cancellation point before a worker merges its output.

        Atomic against cancel(): either the cancel lands first and this raises
        CancellationRequested, or the job is marked as committing and any
        later cancel() is refused with InvalidTransitionError.

        Raises:
            CancellationRequested:     the job was cancelled; discard the output.
            JobAlreadyFinalizedError:  the job reached another terminal state.
            LeaseExpiredError:         this worker no longer owns the job.
        """
        now = self.clock.now()

        def _commit(job: ProcessingJob) -> None:
            if job.status is JobStatus.CANCELLED:
                raise CancellationRequested(f"Job {job.id} was cancelled")
            self.state_machine.ensure_not_terminal(job)
            self._ensure_lease_holder(job, worker_id)
            if job.lease_expires_at is not None and job.lease_expires_at <= now:
                raise LeaseExpiredError(f"Lease on job {job.id} expired at {job.lease_expires_at}")
            self.state_machine.begin_commit(job, now=now)
            job.lease_expires_at = now + self._lease
            if progress is not None:
                job.progress = max(0, min(100, int(progress)))

        job, _ = await self.store.modify(job_id, _commit)
        logger.debug("Job committing output | job=%s worker=%s", job_id, worker_id)
        return job

    # -----------------------------------------------------------------------
    # Cancel / ack
    # -----------------------------------------------------------------------

    async def cancel(self, job_id: str, reason: str | None = None) -> ProcessingJob:
        """
        Mark the job CANCELLED immediately.

        Cancellation of a RUNNING job is cooperative: the handler notices at
        its next checkpoint, and its eventual ack is rejected.
        A job whose worker already passed begin_commit() is merging its output
        and is refused with InvalidTransitionError.
        """
        now = self.clock.now()

        def _cancel(job: ProcessingJob) -> JobStatus:
            previous = job.status
            self.state_machine.cancel(job, now=now, reason=reason)
            return previous

        job, previous = await self.store.modify(job_id, _cancel)
        logger.info(
            "Job cancelled | job=%s from=%s reason=%s",
            job_id, previous.value, reason or "-",
        )
        self._emit(JOB_CANCELLED, job)
        return job

    async def ack(self, job_id: str, worker_id: str, outcome: JobOutcome) -> ProcessingJob:
        """
        Finalize an attempt according to the state machine.

        Raises:
            JobAlreadyFinalizedError:  job is terminal (e.g. cancelled mid-run).
            LeaseExpiredError:         lease was lost and the job was requeued.
        """
        now = self.clock.now()

        def _finish(job: ProcessingJob) -> None:
            self.state_machine.ensure_not_terminal(job)
            self._ensure_lease_holder(job, worker_id)
            if outcome.succeeded:
                self.state_machine.complete(job, outcome.output or {}, now=now)
            else:
                self.state_machine.fail(job, outcome.error, now=now)

        job, _ = await self.store.modify(job_id, _finish)

        if job.status is JobStatus.COMPLETED:
            logger.info("Job completed | job=%s type=%s", job.id, job.job_type.value)
            self._emit(JOB_COMPLETED, job)
        elif job.status is JobStatus.FAILED:
            logger.error(
                "Job failed | job=%s type=%s code=%s retries=%d/%d error=%s",
                job.id, job.job_type.value, job.error_code,
                job.retry_count, job.max_retries, job.error_message,
            )
            self._emit(JOB_FAILED, job)
        return job

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    async def reap(self) -> tuple[int, int]:
        """
        Promote due RETRYING jobs and requeue expired leases.

        Returns (promoted, requeued). Safe to run concurrently from many
        workers: each job is re-checked under the store's exclusive modify.
        """
        now = self.clock.now()
        promoted = requeued = 0

        for job_id in await self.store.due_retry_ids(now):
            _, changed = await self.store.modify(job_id, lambda j: self._promote_if_due(j, now))
            promoted += int(changed)

        for job_id in await self.store.expired_lease_ids(now):
            _, changed = await self.store.modify(job_id, lambda j: self._requeue_if_expired(j, now))
            if changed:
                requeued += 1
                logger.warning("Lease expired, job requeued | job=%s", job_id)

        if promoted:
            logger.info("Retrying jobs promoted | count=%d", promoted)
        return promoted, requeued

    def _promote_if_due(self, job: ProcessingJob, now: datetime) -> bool:
        if job.status is JobStatus.RETRYING and (job.next_attempt_at is None or job.next_attempt_at <= now):
            self.state_machine.promote(job)
            return True
        return False

    def _requeue_if_expired(self, job: ProcessingJob, now: datetime) -> bool:
        if (
            job.status is JobStatus.RUNNING
            and job.lease_expires_at is not None
            and job.lease_expires_at <= now
        ):
            self.state_machine.requeue(job)
            return True
        return False

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    async def get(self, job_id: str) -> ProcessingJob:
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def is_cancelled(self, job_id: str) -> bool:
        job = await self.store.get(job_id)
        return job is not None and job.status is JobStatus.CANCELLED

    async def list_for_document(
        self, document_id: str, organization_id: str | None = None,
    ) -> list[ProcessingJob]:
        return await self.store.list_for_document(document_id, organization_id)

    async def list_failed(
        self,
        organization_id: str | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProcessingJob]:
        return await self.store.list_by_status(
            JobStatus.FAILED, organization_id=organization_id, limit=limit, offset=offset,
        )

    async def stats(self, organization_id: str | None = None) -> QueueStats:
        return await self.store.stats(organization_id)

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _ensure_lease_holder(job: ProcessingJob, worker_id: str) -> None:
        if job.status is not JobStatus.RUNNING or job.worker_id != worker_id:
            raise LeaseExpiredError(
                f"Worker {worker_id} does not hold the lease on job {job.id} "
                f"(status={job.status.value})"
            )

    def _emit(self, event: str, job: ProcessingJob) -> None:
        payload = {
            "jobId":          job.id,
            "documentId":     job.document_id,
            "organizationId": job.organization_id,
            "jobType":        job.job_type.value,
            "status":         job.status.value,
        }
        if job.status is JobStatus.FAILED:
            payload["errorCode"] = job.error_code
            payload["errorMessage"] = job.error_message
        try:
            self._notifier.emit(event, payload)
        except Exception:  # noqa: BLE001
            logger.warning("Notifier raised | event=%s job=%s", event, job.id, exc_info=True)
