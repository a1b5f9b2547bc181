"""
Processing API — Pydantic Request/Response Schemas

  POST /processing/jobs               TriggerJobRequest  → JobCreatedResponse (202)
  GET  /processing/jobs/{id}                             → JobResponse
  POST /processing/jobs/{id}/cancel   CancelJobRequest   → JobResponse
  POST /processing/jobs/{id}/retry    RetryJobRequest    → JobCreatedResponse (202)
  GET  /processing/documents/{id}/jobs                   → JobListResponse
  GET  /processing/jobs/failed                           → JobListResponse
  GET  /processing/stats                                 → QueueStatsResponse

Wire names are camelCase; inputParams are validated per job type by the
service (so errors carry the job type), not here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from docpipe.jobs.types import JobPriority, JobStatus, JobType, ProcessingJob, QueueStats


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class TriggerJobRequest(_ApiModel):
    document_id:  str = Field(..., min_length=1)
    job_type:     JobType
    input_params: dict[str, Any] = Field(default_factory=dict)
    priority:     JobPriority | None = Field(
        None,
        description="Defaults per job type (THUMBNAIL=HIGH, OCR/AI_CLASSIFY=NORMAL, others LOW).",
    )


class CancelJobRequest(_ApiModel):
    reason: str | None = Field(None, max_length=500)


class RetryJobRequest(_ApiModel):
    modified_params: dict[str, Any] | None = Field(
        None,
        description="Keys override the prior job's inputParams.",
    )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class JobCreatedResponse(_ApiModel):
    job_id: str
    status: JobStatus = JobStatus.PENDING


class JobResponse(_ApiModel):
    id:              str
    document_id:     str
    organization_id: str
    job_type:        JobType
    status:          JobStatus
    priority:        JobPriority
    input_params:    dict[str, Any]
    output_data:     dict[str, Any] | None = None
    error_message:   str | None = None
    error_code:      str | None = None
    retry_count:     int
    max_retries:     int
    progress:        int = Field(0, ge=0, le=100)
    created_at:      datetime | None = None
    started_at:      datetime | None = None
    completed_at:    datetime | None = None
    created_by_id:   str | None = None
    cancel_reason:   str | None = None
    last_error:      str | None = None

    @classmethod
    def from_job(cls, job: ProcessingJob) -> "JobResponse":
        return cls(
            id=job.id,
            document_id=job.document_id,
            organization_id=job.organization_id,
            job_type=job.job_type,
            status=job.status,
            priority=job.priority,
            input_params=job.input_params,
            output_data=job.output_data,
            error_message=job.error_message,
            error_code=job.error_code,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
            progress=job.progress,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            created_by_id=job.created_by_id,
            cancel_reason=job.cancel_reason,
            last_error=job.last_error,
        )


class JobListResponse(_ApiModel):
    jobs:  list[JobResponse]
    total: int

    @classmethod
    def from_jobs(cls, jobs: list[ProcessingJob]) -> "JobListResponse":
        return cls(jobs=[JobResponse.from_job(j) for j in jobs], total=len(jobs))


class QueueStatsResponse(_ApiModel):
    by_status: dict[str, int]
    by_type:   dict[str, int]
    total:     int

    @classmethod
    def from_stats(cls, stats: QueueStats) -> "QueueStatsResponse":
        return cls(by_status=stats.by_status, by_type=stats.by_type, total=stats.total)
