"""
Processing job domain types.

A ProcessingJob is a unit of asynchronous work transforming one document via
one processing capability. Jobs are append-only history: they are never
deleted, newer jobs of the same type supersede older ones.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class JobType(str, Enum):
    OCR         = "OCR"
    PDF_SPLIT   = "PDF_SPLIT"
    PDF_MERGE   = "PDF_MERGE"
    THUMBNAIL   = "THUMBNAIL"
    AI_CLASSIFY = "AI_CLASSIFY"
    EMBEDDING   = "EMBEDDING"
    CONVERT     = "CONVERT"
    COMPRESS    = "COMPRESS"


class JobStatus(str, Enum):
    PENDING   = "PENDING"
    RUNNING   = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED    = "FAILED"
    CANCELLED = "CANCELLED"
    RETRYING  = "RETRYING"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


class JobPriority(str, Enum):
    LOW    = "LOW"
    NORMAL = "NORMAL"
    HIGH   = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        """Higher rank is leased first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    JobPriority.LOW:    0,
    JobPriority.NORMAL: 1,
    JobPriority.HIGH:   2,
    JobPriority.URGENT: 3,
}

ACTIVE_STATUSES   = frozenset({JobStatus.PENDING, JobStatus.RUNNING, JobStatus.RETRYING})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Priority applied when the caller does not supply one.
# Thumbnails are user-visible immediately; bulk transforms can wait.
DEFAULT_PRIORITIES: dict[JobType, JobPriority] = {
    JobType.THUMBNAIL:   JobPriority.HIGH,
    JobType.OCR:         JobPriority.NORMAL,
    JobType.AI_CLASSIFY: JobPriority.NORMAL,
    JobType.EMBEDDING:   JobPriority.LOW,
    JobType.PDF_SPLIT:   JobPriority.LOW,
    JobType.PDF_MERGE:   JobPriority.LOW,
    JobType.CONVERT:     JobPriority.LOW,
    JobType.COMPRESS:    JobPriority.LOW,
}


@dataclass
class ProcessingJob:
    id:              str
    document_id:     str
    organization_id: str
    job_type:        JobType
    status:          JobStatus = JobStatus.PENDING
    priority:        JobPriority = JobPriority.NORMAL
    input_params:    dict[str, Any] = field(default_factory=dict)
    output_data:     dict[str, Any] | None = None
    error_message:   str | None = None
    error_code:      str | None = None
    retry_count:     int = 0
    max_retries:     int = 3
    progress:        int = 0
    created_at:      datetime | None = None
    started_at:      datetime | None = None
    completed_at:    datetime | None = None
    created_by_id:   str | None = None

    # Lease / scheduling bookkeeping (owned by the dispatcher)
    worker_id:        str | None = None
    lease_expires_at: datetime | None = None
    commit_started_at: datetime | None = None  # output is being merged; too late to cancel
    next_attempt_at:  datetime | None = None
    cancel_reason:    str | None = None
    last_error:       str | None = None   # most recent retryable failure while RETRYING

    def copy(self, **changes: Any) -> "ProcessingJob":
        """Return a detached copy; stores never hand out their own instances."""
        changes.setdefault("input_params", dict(self.input_params))
        if self.output_data is not None:
            changes.setdefault("output_data", dict(self.output_data))
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id":             self.id,
            "documentId":     self.document_id,
            "organizationId": self.organization_id,
            "jobType":        self.job_type.value,
            "status":         self.status.value,
            "priority":       self.priority.value,
            "inputParams":    self.input_params,
            "outputData":     self.output_data,
            "errorMessage":   self.error_message,
            "errorCode":      self.error_code,
            "retryCount":     self.retry_count,
            "maxRetries":     self.max_retries,
            "progress":       self.progress,
            "createdAt":      _iso(self.created_at),
            "startedAt":      _iso(self.started_at),
            "completedAt":    _iso(self.completed_at),
            "createdById":    self.created_by_id,
            "cancelReason":   self.cancel_reason,
            "lastError":      self.last_error,
        }

    def __repr__(self) -> str:
        return (
            f"<ProcessingJob id={self.id} doc={self.document_id} "
            f"type={self.job_type.value} status={self.status.value} "
            f"retries={self.retry_count}/{self.max_retries}>"
        )


@dataclass(frozen=True)
class JobOutcome:
    """What a worker reports back to the dispatcher via ack()."""

    output:    dict[str, Any] | None = None
    error:     BaseException | None = None

    @classmethod
    def success(cls, output: dict[str, Any]) -> "JobOutcome":
        return cls(output=output)

    @classmethod
    def failure(cls, error: BaseException) -> "JobOutcome":
        return cls(error=error)

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class QueueStats:
    by_status: dict[str, int]
    by_type:   dict[str, int]
    total:     int

    def to_dict(self) -> dict[str, Any]:
        return {"byStatus": self.by_status, "byType": self.by_type, "total": self.total}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
