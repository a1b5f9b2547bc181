"""
SQLAlchemy ORM Model — processing_jobs

Append-only job history. Two indexes carry the queue semantics:

  uq_processing_jobs_active   partial UNIQUE(document_id, job_type)
                              WHERE status IN ('PENDING','RUNNING','RETRYING')
                              → at most one active job per pair, enforced by
                                the database, not by a read-then-write check
  idx_processing_jobs_queue   (status, priority_rank DESC, created_at, seq)
                              → lease order: priority, then FIFO

priority_rank duplicates the priority enum as an integer so the lease query
can ORDER BY it without a CASE expression. seq is a monotonically increasing
identity column that breaks created_at ties in insertion order.

Schema: docpipe (set via __table_args__)
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Identity,
    Index,
    Integer,
    SmallInteger,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from docpipe.jobs.types import JobPriority, JobStatus, JobType, ProcessingJob
from docpipe.models.documents import Base

_ACTIVE_PREDICATE = text("status IN ('PENDING', 'RUNNING', 'RETRYING')")


class ProcessingJobRow(Base):
    __tablename__ = "processing_jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'RUNNING', 'COMPLETED', 'FAILED', 'CANCELLED', 'RETRYING')",
            name="processing_jobs_status_check",
        ),
        CheckConstraint("retry_count <= max_retries", name="processing_jobs_retry_bound"),
        CheckConstraint(
            "(completed_at IS NOT NULL) = (status IN ('COMPLETED', 'FAILED', 'CANCELLED'))",
            name="processing_jobs_completed_at_check",
        ),
        Index(
            "uq_processing_jobs_active",
            "document_id", "job_type",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
        ),
        Index("idx_processing_jobs_queue", "status", text("priority_rank DESC"), "created_at", "seq"),
        Index("idx_processing_jobs_document", "document_id", text("seq DESC")),
        Index("idx_processing_jobs_org_status", "organization_id", "status"),
        {"schema": "docpipe"},
    )

    id:  Mapped[str] = mapped_column(Text, primary_key=True)
    seq: Mapped[int] = mapped_column(BigInteger, Identity(always=True), nullable=False, unique=True)

    document_id:     Mapped[str] = mapped_column(Text, nullable=False)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    job_type:        Mapped[str] = mapped_column(Text, nullable=False)
    status:          Mapped[str] = mapped_column(Text, nullable=False, default="PENDING")
    priority:        Mapped[str] = mapped_column(Text, nullable=False, default="NORMAL")
    priority_rank:   Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)

    input_params:  Mapped[dict]           = mapped_column(JSONB, nullable=False, default=dict, server_default="{}")
    output_data:   Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    error_message: Mapped[Optional[str]]  = mapped_column(Text, nullable=True)
    error_code:    Mapped[Optional[str]]  = mapped_column(Text, nullable=True)
    last_error:    Mapped[Optional[str]]  = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[Optional[str]]  = mapped_column(Text, nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3, server_default="3")
    progress:    Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0, server_default="0")

    worker_id:        Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    commit_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_attempt_at:  Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by_id: Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    created_at:    Mapped[datetime]           = mapped_column(DateTime(timezone=True), nullable=False)
    started_at:    Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at:  Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Columns copied verbatim between row and domain object
    _PLAIN = (
        "id", "document_id", "organization_id", "input_params", "output_data",
        "error_message", "error_code", "last_error", "cancel_reason",
        "retry_count", "max_retries", "progress", "worker_id",
        "lease_expires_at", "commit_started_at", "next_attempt_at", "created_by_id",
        "created_at", "started_at", "completed_at",
    )

    @classmethod
    def from_domain(cls, job: ProcessingJob) -> "ProcessingJobRow":
        row = cls()
        row.apply(job)
        return row

    def apply(self, job: ProcessingJob) -> None:
        """Copy every mutable field of `job` onto this row."""
        for name in self._PLAIN:
            setattr(self, name, getattr(job, name))
        self.job_type = job.job_type.value
        self.status = job.status.value
        self.priority = job.priority.value
        self.priority_rank = job.priority.rank

    def to_domain(self) -> ProcessingJob:
        values = {name: getattr(self, name) for name in self._PLAIN}
        values["input_params"] = dict(self.input_params or {})
        values["output_data"] = dict(self.output_data) if self.output_data is not None else None
        return ProcessingJob(
            job_type=JobType(self.job_type),
            status=JobStatus(self.status),
            priority=JobPriority(self.priority),
            **values,
        )

    def __repr__(self) -> str:
        return (
            f"<ProcessingJobRow id={self.id} doc={self.document_id} "
            f"type={self.job_type} status={self.status}>"
        )
