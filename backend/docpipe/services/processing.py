"""
Processing Service — the externally exposed job operations.

  trigger_processing(document_id, job_type, input_params?, priority?) -> job_id
  get_job_status(job_id)                     -> ProcessingJob
  cancel_job(job_id, reason?)                -> ProcessingJob
  retry_job(job_id, modified_params?)        -> new job_id
  list_jobs_for_document(document_id)        -> [ProcessingJob], newest first
  list_failed_jobs(limit, offset)            -> [ProcessingJob]
  queue_stats()                              -> QueueStats

Every call is scoped by the caller's TenantContext. A job or document that
belongs to another organization is reported exactly like a missing one.
"""

from __future__ import annotations

import logging
from typing import Any

from docpipe.auth.tenant import TenantContext
from docpipe.core.errors import InvalidTransitionError, NotFoundError
from docpipe.indexing.store import DocumentStore
from docpipe.jobs.dispatcher import JobDispatcher
from docpipe.jobs.types import JobPriority, JobType, ProcessingJob, QueueStats

logger = logging.getLogger(__name__)


class ProcessingService:

    def __init__(self, dispatcher: JobDispatcher, documents: DocumentStore) -> None:
        self._dispatcher = dispatcher
        self._documents = documents

    async def trigger_processing(
        self,
        tenant: TenantContext,
        document_id: str,
        job_type: JobType,
        input_params: dict[str, Any] | None = None,
        priority: JobPriority | None = None,
    ) -> str:
        """
        Raises:
            NotFoundError:            unknown document (or another tenant's).
            ValidationError:          inputParams don't match the job type.
            DuplicateActiveJobError:  a job of this type is already active for the document.
        """
        document = await self._documents.get(document_id)
        if document is None or document.organization_id != tenant.organization_id:
            raise NotFoundError(f"Document {document_id} not found")

        return await self._dispatcher.enqueue(
            document_id,
            job_type,
            input_params,
            priority,
            organization_id=tenant.organization_id,
            created_by_id=tenant.user_id,
        )

    async def get_job_status(self, tenant: TenantContext, job_id: str) -> ProcessingJob:
        job = await self._dispatcher.get(job_id)
        if job.organization_id != tenant.organization_id:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def cancel_job(
        self, tenant: TenantContext, job_id: str, reason: str | None = None,
    ) -> ProcessingJob:
        await self.get_job_status(tenant, job_id)
        return await self._dispatcher.cancel(job_id, reason)

    async def retry_job(
        self,
        tenant: TenantContext,
        job_id: str,
        modified_params: dict[str, Any] | None = None,
    ) -> str:
        """
        Enqueue a fresh job for the same document and type.

        The prior job stays in history untouched. Its params are the base;
        `modified_params` keys override them.

        Raises:
            InvalidTransitionError:  the prior job is still PENDING / RUNNING / RETRYING.
        """
        prior = await self.get_job_status(tenant, job_id)
        if not prior.status.is_terminal:
            raise InvalidTransitionError(
                f"Job {job_id} is {prior.status.value}; only finished jobs can be retried"
            )

        params = {**prior.input_params, **(modified_params or {})}
        new_id = await self._dispatcher.enqueue(
            prior.document_id,
            prior.job_type,
            params,
            prior.priority,
            organization_id=tenant.organization_id,
            created_by_id=tenant.user_id or prior.created_by_id,
            max_retries=prior.max_retries,
        )
        logger.info("Job retried | prior=%s new=%s type=%s", job_id, new_id, prior.job_type.value)
        return new_id

    async def list_jobs_for_document(self, tenant: TenantContext, document_id: str) -> list[ProcessingJob]:
        return await self._dispatcher.list_for_document(document_id, tenant.organization_id)

    async def list_failed_jobs(
        self, tenant: TenantContext, *, limit: int = 50, offset: int = 0,
    ) -> list[ProcessingJob]:
        return await self._dispatcher.list_failed(tenant.organization_id, limit=limit, offset=offset)

    async def queue_stats(self, tenant: TenantContext) -> QueueStats:
        return await self._dispatcher.stats(tenant.organization_id)
