"""
Worker Pool — a fixed number of asyncio workers pulling leased jobs.

Each worker runs one job at a time:

    lease → load document → handler (with checkpoints) → begin_commit
          → index merge → ack(success)

and on any exception, ack(failure) so the state machine decides between
RETRYING and FAILED. Handlers do their blocking work in executors, so the
event loop (and with it every other worker's lease / ack) is never blocked.

Cancellation: begin_commit() is the last cancellation point before the
index merge. It is atomic against cancel(), so a job cancelled at any point
during handler execution never merges its output, and once the merge has
started a cancel is refused instead of racing it. A worker that finds its
job cancelled or its lease lost simply drops the attempt; the dispatcher
already recorded the job's state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from docpipe.core.errors import (
    CancellationRequested,
    FatalError,
    JobAlreadyFinalizedError,
    LeaseExpiredError,
)
from docpipe.indexing.coordinator import IndexCoordinator
from docpipe.indexing.store import DocumentStore
from docpipe.indexing.types import DocumentSnapshot
from docpipe.jobs.dispatcher import JobDispatcher
from docpipe.jobs.types import JobOutcome, ProcessingJob
from docpipe.processing.base import JobContext
from docpipe.processing.registry import HandlerRegistry

logger = logging.getLogger(__name__)

PRE_MERGE_PROGRESS = 95


class WorkerPool:

    def __init__(
        self,
        dispatcher: JobDispatcher,
        registry: HandlerRegistry,
        coordinator: IndexCoordinator,
        documents: DocumentStore,
        *,
        concurrency: int = 4,
        poll_interval: float = 1.0,
        name: str = "worker",
    ) -> None:
        self.dispatcher = dispatcher
        self.registry = registry
        self.coordinator = coordinator
        self.documents = documents
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.name = name
        self._tasks: list[asyncio.Task[Any]] = []
        self._stopping = asyncio.Event()

    @property
    def worker_ids(self) -> list[str]:
        return [f"{self.name}-{i}" for i in range(self.concurrency)]

    # ------------------------------------------------------------------
    # One job
    # ------------------------------------------------------------------

    async def run_once(self, worker_id: str) -> ProcessingJob | None:
        """Lease and process one job. Returns the job as last seen, or None if the queue was empty."""
        job = await self.dispatcher.lease(worker_id)
        if job is None:
            return None
        return await self._execute(job, worker_id)

    async def _execute(self, job: ProcessingJob, worker_id: str) -> ProcessingJob:
        async def _heartbeat(progress: int | None) -> None:
            await self.dispatcher.heartbeat(job.id, worker_id, progress=progress)

        ctx = JobContext(job, _heartbeat)
        try:
            document = await self._load_document(job)
            output = (await self.registry.run(document, ctx)).to_dict()
            await self.dispatcher.begin_commit(job.id, worker_id, progress=PRE_MERGE_PROGRESS)
            await self.coordinator.merge(document.id, job.job_type, output)
            return await self.dispatcher.ack(job.id, worker_id, JobOutcome.success(output))

        except CancellationRequested:
            logger.info("Job cancelled mid-run, output discarded | job=%s worker=%s", job.id, worker_id)
        except (LeaseExpiredError, JobAlreadyFinalizedError) as exc:
            logger.warning("Attempt abandoned | job=%s worker=%s reason=%s", job.id, worker_id, exc.message)
        except Exception as exc:
            return await self._ack_failure(job, worker_id, exc)
        return await self.dispatcher.get(job.id)

    async def _ack_failure(self, job: ProcessingJob, worker_id: str, exc: Exception) -> ProcessingJob:
        try:
            return await self.dispatcher.ack(job.id, worker_id, JobOutcome.failure(exc))
        except (LeaseExpiredError, JobAlreadyFinalizedError) as ack_exc:
            logger.warning(
                "Failure not recorded | job=%s worker=%s reason=%s original=%s",
                job.id, worker_id, ack_exc.message, exc,
            )
            return await self.dispatcher.get(job.id)

    async def _load_document(self, job: ProcessingJob) -> DocumentSnapshot:
        document = await self.documents.get(job.document_id)
        if document is None or document.organization_id != job.organization_id:
            raise FatalError(f"Document {job.document_id} not found")
        return document

    # ------------------------------------------------------------------
    # Many jobs
    # ------------------------------------------------------------------

    async def _drain_worker(self, worker_id: str) -> int:
        processed = 0
        while await self.run_once(worker_id) is not None:
            processed += 1
        return processed

    async def drain(self) -> int:
        """
        Run every worker until no job is PENDING; returns jobs processed.

        RETRYING jobs whose backoff has not elapsed are left alone.
        """
        counts = await asyncio.gather(*(self._drain_worker(w) for w in self.worker_ids))
        return sum(counts)

    async def _loop(self, worker_id: str) -> None:
        logger.info("Worker started | worker=%s", worker_id)
        while not self._stopping.is_set():
            try:
                job = await self.run_once(worker_id)
            except Exception:
                # Store outage or similar: back off and keep the worker alive
                logger.exception("Worker iteration failed | worker=%s", worker_id)
                job = None
            if job is None:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        logger.info("Worker stopped | worker=%s", worker_id)

    def start(self) -> None:
        if self._tasks:
            return
        self._stopping.clear()
        self._tasks = [asyncio.create_task(self._loop(w), name=w) for w in self.worker_ids]
        logger.info("Worker pool started | workers=%d poll=%.1fs", self.concurrency, self.poll_interval)

    async def stop(self) -> None:
        """Let in-flight jobs finish, then stop polling."""
        self._stopping.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Worker pool stopped")
