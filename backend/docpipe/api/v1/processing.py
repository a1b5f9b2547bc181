"""
Processing API — job lifecycle endpoints

POST /api/v1/processing/jobs                    → trigger a job (202)
GET  /api/v1/processing/jobs/failed             → failed jobs, newest first
GET  /api/v1/processing/jobs/{id}               → job status + progress
POST /api/v1/processing/jobs/{id}/cancel        → cancel an active job
POST /api/v1/processing/jobs/{id}/retry         → new job for the same document/type
GET  /api/v1/processing/documents/{id}/jobs     → job history for a document
GET  /api/v1/processing/stats                   → counts per status / job type

All endpoints are tenant-scoped through CurrentTenant; another tenant's job
or document answers 404 exactly like a missing one.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, status

from docpipe.api.deps import ProcessingServiceDep
from docpipe.auth.tenant import CurrentTenant
from docpipe.schemas.processing import (
    CancelJobRequest,
    JobCreatedResponse,
    JobListResponse,
    JobResponse,
    QueueStatsResponse,
    RetryJobRequest,
    TriggerJobRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/processing", tags=["Processing"])


@router.post(
    "/jobs",
    response_model=JobCreatedResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Trigger a processing job for a document",
)
async def trigger_job(
    body: TriggerJobRequest,
    tenant: CurrentTenant,
    service: ProcessingServiceDep,
) -> JobCreatedResponse:
    job_id = await service.trigger_processing(
        tenant, body.document_id, body.job_type, body.input_params, body.priority,
    )
    return JobCreatedResponse(job_id=job_id)


# Declared before /jobs/{job_id} so "failed" is not captured as an id
@router.get(
    "/jobs/failed",
    response_model=JobListResponse,
    response_model_by_alias=True,
    summary="List failed jobs",
)
async def list_failed_jobs(
    tenant: CurrentTenant,
    service: ProcessingServiceDep,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> JobListResponse:
    jobs = await service.list_failed_jobs(tenant, limit=limit, offset=offset)
    return JobListResponse.from_jobs(jobs)


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    response_model_by_alias=True,
    summary="Get job status",
)
async def get_job_status(job_id: str, tenant: CurrentTenant, service: ProcessingServiceDep) -> JobResponse:
    return JobResponse.from_job(await service.get_job_status(tenant, job_id))


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=JobResponse,
    response_model_by_alias=True,
    summary="Cancel a job",
    description=(
        "Only PENDING, RUNNING or RETRYING jobs can be cancelled. A finished job, or one "
        "already merging its output, answers 409."
    ),
)
async def cancel_job(
    job_id: str,
    tenant: CurrentTenant,
    service: ProcessingServiceDep,
    body: CancelJobRequest | None = None,
) -> JobResponse:
    job = await service.cancel_job(tenant, job_id, body.reason if body else None)
    return JobResponse.from_job(job)


@router.post(
    "/jobs/{job_id}/retry",
    response_model=JobCreatedResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry a finished job",
)
async def retry_job(
    job_id: str,
    tenant: CurrentTenant,
    service: ProcessingServiceDep,
    body: RetryJobRequest | None = None,
) -> JobCreatedResponse:
    new_id = await service.retry_job(tenant, job_id, body.modified_params if body else None)
    return JobCreatedResponse(job_id=new_id)


@router.get(
    "/documents/{document_id}/jobs",
    response_model=JobListResponse,
    response_model_by_alias=True,
    summary="List a document's jobs, newest first",
)
async def list_document_jobs(
    document_id: str, tenant: CurrentTenant, service: ProcessingServiceDep,
) -> JobListResponse:
    return JobListResponse.from_jobs(await service.list_jobs_for_document(tenant, document_id))


@router.get(
    "/stats",
    response_model=QueueStatsResponse,
    response_model_by_alias=True,
    summary="Queue statistics",
)
async def queue_stats(tenant: CurrentTenant, service: ProcessingServiceDep) -> QueueStatsResponse:
    return QueueStatsResponse.from_stats(await service.queue_stats(tenant))
