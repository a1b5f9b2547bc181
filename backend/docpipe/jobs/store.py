"""
Job persistence port + in-memory adapter.

The dispatcher is the single writer of ProcessingJob records. Every mutation
goes through one of two atomic primitives:

  modify(job_id, mutate)       — load one job exclusively, apply `mutate`,
                                 persist. If `mutate` raises, nothing changes.
  acquire_next(now, mutate)    — pick the highest-priority PENDING job
                                 (FIFO within a priority), apply `mutate`,
                                 persist. Two concurrent callers never receive
                                 the same job.

insert() enforces the at-most-one-active-job rule per (document_id, job_type)
atomically with the write.

The SQL adapter (docpipe.jobs.sql_store) implements the same contract with
SELECT … FOR UPDATE [SKIP LOCKED] and a partial unique index.
"""

from __future__ import annotations

import asyncio
import itertools
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime
from typing import Callable, TypeVar

from docpipe.core.errors import DuplicateActiveJobError, NotFoundError
from docpipe.jobs.types import (
    ACTIVE_STATUSES,
    JobStatus,
    JobType,
    ProcessingJob,
    QueueStats,
)

T = TypeVar("T")

Mutator = Callable[[ProcessingJob], T]


class JobStore(ABC):

    @abstractmethod
    async def insert(self, job: ProcessingJob) -> None:
        """Persist a new job; DuplicateActiveJobError if one is already active for the pair."""

    @abstractmethod
    async def get(self, job_id: str) -> ProcessingJob | None: ...

    @abstractmethod
    async def modify(self, job_id: str, mutate: Mutator[T]) -> tuple[ProcessingJob, T]:
        """Atomically apply `mutate` to one job. NotFoundError if it does not exist."""

    @abstractmethod
    async def acquire_next(self, now: datetime, mutate: Mutator[T]) -> ProcessingJob | None:
        """Atomically claim the next PENDING job, or None when the queue is empty."""

    @abstractmethod
    async def find_active(self, document_id: str, job_type: JobType) -> ProcessingJob | None: ...

    @abstractmethod
    async def due_retry_ids(self, now: datetime) -> list[str]:
        """RETRYING jobs whose backoff has elapsed."""

    @abstractmethod
    async def expired_lease_ids(self, now: datetime) -> list[str]:
        """RUNNING jobs whose lease expired."""

    @abstractmethod
    async def list_for_document(
        self, document_id: str, organization_id: str | None = None,
    ) -> list[ProcessingJob]:
        """Newest first."""

    @abstractmethod
    async def list_by_status(
        self,
        status: JobStatus,
        *,
        organization_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProcessingJob]:
        """Newest first."""

    @abstractmethod
    async def stats(self, organization_id: str | None = None) -> QueueStats: ...


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------

class InMemoryJobStore(JobStore):
    """
    Dict-backed store guarded by a single asyncio.Lock.

    Used by tests and single-process deployments. Callers only ever see
    copies, so a job can't be mutated behind the lock's back.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, ProcessingJob] = {}
        self._seq:  dict[str, int] = {}
        self._counter = itertools.count()
        self._lock = asyncio.Lock()

    async def insert(self, job: ProcessingJob) -> None:
        async with self._lock:
            active = self._active_for(job.document_id, job.job_type)
            if active is not None:
                raise DuplicateActiveJobError(job.document_id, job.job_type.value, active.id)
            self._jobs[job.id] = job.copy()
            self._seq[job.id] = next(self._counter)

    async def get(self, job_id: str) -> ProcessingJob | None:
        job = self._jobs.get(job_id)
        return job.copy() if job is not None else None

    async def modify(self, job_id: str, mutate: Mutator[T]) -> tuple[ProcessingJob, T]:
        async with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise NotFoundError(f"Job {job_id} not found")
            working = current.copy()
            result = mutate(working)
            self._jobs[job_id] = working
            return working.copy(), result

    async def acquire_next(self, now: datetime, mutate: Mutator[T]) -> ProcessingJob | None:
        async with self._lock:
            pending = [j for j in self._jobs.values() if j.status is JobStatus.PENDING]
            if not pending:
                return None
            chosen = min(
                pending,
                key=lambda j: (-j.priority.rank, j.created_at or now, self._seq[j.id]),
            )
            working = chosen.copy()
            mutate(working)
            self._jobs[working.id] = working
            return working.copy()

    async def find_active(self, document_id: str, job_type: JobType) -> ProcessingJob | None:
        job = self._active_for(document_id, job_type)
        return job.copy() if job is not None else None

    async def due_retry_ids(self, now: datetime) -> list[str]:
        return [
            j.id for j in self._jobs.values()
            if j.status is JobStatus.RETRYING
            and (j.next_attempt_at is None or j.next_attempt_at <= now)
        ]

    async def expired_lease_ids(self, now: datetime) -> list[str]:
        return [
            j.id for j in self._jobs.values()
            if j.status is JobStatus.RUNNING
            and j.lease_expires_at is not None
            and j.lease_expires_at <= now
        ]

    async def list_for_document(
        self, document_id: str, organization_id: str | None = None,
    ) -> list[ProcessingJob]:
        jobs = [
            j for j in self._jobs.values()
            if j.document_id == document_id
            and (organization_id is None or j.organization_id == organization_id)
        ]
        return [j.copy() for j in self._newest_first(jobs)]

    async def list_by_status(
        self,
        status: JobStatus,
        *,
        organization_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProcessingJob]:
        jobs = [
            j for j in self._jobs.values()
            if j.status is status
            and (organization_id is None or j.organization_id == organization_id)
        ]
        return [j.copy() for j in self._newest_first(jobs)[offset: offset + limit]]

    async def stats(self, organization_id: str | None = None) -> QueueStats:
        jobs = [
            j for j in self._jobs.values()
            if organization_id is None or j.organization_id == organization_id
        ]
        by_status = Counter(j.status.value for j in jobs)
        by_type   = Counter(j.job_type.value for j in jobs)
        return QueueStats(
            by_status={s.value: by_status.get(s.value, 0) for s in JobStatus},
            by_type={t.value: by_type.get(t.value, 0) for t in JobType},
            total=len(jobs),
        )

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _active_for(self, document_id: str, job_type: JobType) -> ProcessingJob | None:
        for job in self._jobs.values():
            if (
                job.document_id == document_id
                and job.job_type is job_type
                and job.status in ACTIVE_STATUSES
            ):
                return job
        return None

    def _newest_first(self, jobs: list[ProcessingJob]) -> list[ProcessingJob]:
        return sorted(jobs, key=lambda j: self._seq[j.id], reverse=True)

    def __len__(self) -> int:
        return len(self._jobs)
