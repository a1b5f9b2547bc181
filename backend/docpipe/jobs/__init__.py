"""
Processing job queue: domain types, state machine, stores and dispatcher.
"""

from docpipe.jobs.dispatcher import JobDispatcher
from docpipe.jobs.state_machine import JobStateMachine, RetryPolicy
from docpipe.jobs.store import InMemoryJobStore, JobStore
from docpipe.jobs.types import (
    JobOutcome,
    JobPriority,
    JobStatus,
    JobType,
    ProcessingJob,
)

__all__ = [
    "InMemoryJobStore",
    "JobDispatcher",
    "JobOutcome",
    "JobPriority",
    "JobStateMachine",
    "JobStatus",
    "JobStore",
    "JobType",
    "ProcessingJob",
    "RetryPolicy",
]
