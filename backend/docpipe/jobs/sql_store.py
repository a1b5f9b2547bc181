"""
PostgreSQL job store (SQLAlchemy async + asyncpg).

  insert        INSERT; the partial unique index rejects a second active job
                for the same (document_id, job_type) → DuplicateActiveJobError
  modify        SELECT … FOR UPDATE, mutate, UPDATE, one transaction
  acquire_next  SELECT … ORDER BY priority_rank DESC, created_at, seq
                LIMIT 1 FOR UPDATE SKIP LOCKED → concurrent workers never
                block on, or receive, the same row

Connection-level failures surface as PersistenceUnavailableError (retryable).
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Any, Callable, Coroutine, TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from docpipe.core.errors import DuplicateActiveJobError, NotFoundError, PersistenceUnavailableError
from docpipe.db.session import SessionFactory, session_scope
from docpipe.jobs.store import JobStore, Mutator
from docpipe.jobs.types import ACTIVE_STATUSES, JobStatus, JobType, ProcessingJob, QueueStats
from docpipe.models.jobs import ProcessingJobRow

logger = logging.getLogger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


def _translate_db_errors(func_: F) -> F:
    @functools.wraps(func_)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func_(*args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            logger.error("Job store unavailable | op=%s error=%s", func_.__name__, exc)
            raise PersistenceUnavailableError(f"Job store unavailable: {exc.orig or exc}") from exc
    return wrapper  # type: ignore[return-value]


class SqlJobStore(JobStore):

    def __init__(self, session_factory: SessionFactory) -> None:
        self._sessions = session_factory

    @_translate_db_errors
    async def insert(self, job: ProcessingJob) -> None:
        try:
            async with session_scope(self._sessions) as session:
                session.add(ProcessingJobRow.from_domain(job))
        except IntegrityError as exc:
            active = await self.find_active(job.document_id, job.job_type)
            if active is None:
                raise
            raise DuplicateActiveJobError(job.document_id, job.job_type.value, active.id) from exc

    @_translate_db_errors
    async def get(self, job_id: str) -> ProcessingJob | None:
        async with session_scope(self._sessions) as session:
            row = await session.get(ProcessingJobRow, job_id)
            return row.to_domain() if row is not None else None

    @_translate_db_errors
    async def modify(self, job_id: str, mutate: Mutator[T]) -> tuple[ProcessingJob, T]:
        async with session_scope(self._sessions) as session:
            stmt = select(ProcessingJobRow).where(ProcessingJobRow.id == job_id).with_for_update()
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Job {job_id} not found")
            job = row.to_domain()
            result = mutate(job)
            row.apply(job)
            return job.copy(), result

    @_translate_db_errors
    async def acquire_next(self, now: datetime, mutate: Mutator[T]) -> ProcessingJob | None:
        async with session_scope(self._sessions) as session:
            stmt = (
                select(ProcessingJobRow)
                .where(ProcessingJobRow.status == JobStatus.PENDING.value)
                .order_by(
                    ProcessingJobRow.priority_rank.desc(),
                    ProcessingJobRow.created_at,
                    ProcessingJobRow.seq,
                )
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            job = row.to_domain()
            mutate(job)
            row.apply(job)
            return job.copy()

    @_translate_db_errors
    async def find_active(self, document_id: str, job_type: JobType) -> ProcessingJob | None:
        async with session_scope(self._sessions) as session:
            stmt = select(ProcessingJobRow).where(
                ProcessingJobRow.document_id == document_id,
                ProcessingJobRow.job_type == job_type.value,
                ProcessingJobRow.status.in_(_ACTIVE),
            )
            row = (await session.execute(stmt)).scalars().first()
            return row.to_domain() if row is not None else None

    @_translate_db_errors
    async def due_retry_ids(self, now: datetime) -> list[str]:
        async with session_scope(self._sessions) as session:
            stmt = select(ProcessingJobRow.id).where(
                ProcessingJobRow.status == JobStatus.RETRYING.value,
                or_(ProcessingJobRow.next_attempt_at.is_(None), ProcessingJobRow.next_attempt_at <= now),
            )
            return list((await session.execute(stmt)).scalars().all())

    @_translate_db_errors
    async def expired_lease_ids(self, now: datetime) -> list[str]:
        async with session_scope(self._sessions) as session:
            stmt = select(ProcessingJobRow.id).where(
                ProcessingJobRow.status == JobStatus.RUNNING.value,
                ProcessingJobRow.lease_expires_at.is_not(None),
                ProcessingJobRow.lease_expires_at <= now,
            )
            return list((await session.execute(stmt)).scalars().all())

    @_translate_db_errors
    async def list_for_document(
        self, document_id: str, organization_id: str | None = None,
    ) -> list[ProcessingJob]:
        async with session_scope(self._sessions) as session:
            stmt = select(ProcessingJobRow).where(ProcessingJobRow.document_id == document_id)
            if organization_id is not None:
                stmt = stmt.where(ProcessingJobRow.organization_id == organization_id)
            stmt = stmt.order_by(ProcessingJobRow.seq.desc())
            return [row.to_domain() for row in (await session.execute(stmt)).scalars().all()]

    @_translate_db_errors
    async def list_by_status(
        self,
        status: JobStatus,
        *,
        organization_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProcessingJob]:
        async with session_scope(self._sessions) as session:
            stmt = select(ProcessingJobRow).where(ProcessingJobRow.status == status.value)
            if organization_id is not None:
                stmt = stmt.where(ProcessingJobRow.organization_id == organization_id)
            stmt = stmt.order_by(ProcessingJobRow.seq.desc()).limit(limit).offset(offset)
            return [row.to_domain() for row in (await session.execute(stmt)).scalars().all()]

    @_translate_db_errors
    async def stats(self, organization_id: str | None = None) -> QueueStats:
        async with session_scope(self._sessions) as session:
            stmt = select(ProcessingJobRow.status, ProcessingJobRow.job_type, func.count())
            if organization_id is not None:
                stmt = stmt.where(ProcessingJobRow.organization_id == organization_id)
            stmt = stmt.group_by(ProcessingJobRow.status, ProcessingJobRow.job_type)
            rows = (await session.execute(stmt)).all()

        by_status = {s.value: 0 for s in JobStatus}
        by_type = {t.value: 0 for t in JobType}
        total = 0
        for status, job_type, count in rows:
            by_status[status] = by_status.get(status, 0) + count
            by_type[job_type] = by_type.get(job_type, 0) + count
            total += count
        return QueueStats(by_status=by_status, by_type=by_type, total=total)
