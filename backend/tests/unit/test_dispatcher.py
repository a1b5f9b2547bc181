"""
Unit Tests — JobDispatcher
══════════════════════════
In-memory store, manual clock, recording notifier (see conftest.py).

Coverage targets:
  ✅ enqueue validates params, applies per-type default priority
  ✅ duplicate active (document, type) rejected; allowed again once terminal
  ✅ lease order: priority desc, then FIFO
  ✅ lease expiry → requeued; late ack rejected
  ✅ heartbeat extends lease, records progress, observes cancellation
  ✅ retry backoff: RETRYING job not leasable until delay elapsed
  ✅ any call against a terminal job → JobAlreadyFinalizedError
  ✅ begin_commit / cancel are mutually exclusive
  ✅ notifier events: started / completed / failed / cancelled
  ✅ listing and statistics
"""

from __future__ import annotations

import pytest

from docpipe.core.errors import (
    CancellationRequested,
    DuplicateActiveJobError,
    FatalError,
    InvalidTransitionError,
    JobAlreadyFinalizedError,
    LeaseExpiredError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from docpipe.jobs.types import JobOutcome, JobPriority, JobStatus, JobType
from docpipe.notifications import JOB_CANCELLED, JOB_COMPLETED, JOB_FAILED, JOB_STARTED
from tests.conftest import OTHER_ORG, TEST_ORG, TEST_USER


async def _enqueue(dispatcher, doc_id="doc-1", job_type=JobType.OCR, params=None, priority=None, **kw):
    return await dispatcher.enqueue(
        doc_id, job_type, params, priority, organization_id=kw.pop("org", TEST_ORG), **kw,
    )


@pytest.mark.unit
class TestEnqueue:

    async def test_creates_pending_job_with_normalised_params(self, dispatcher):
        job_id = await _enqueue(dispatcher, created_by_id=TEST_USER)
        job = await dispatcher.get(job_id)

        assert job_id == "job-0001"
        assert job.status is JobStatus.PENDING
        assert job.input_params == {"language": "eng", "force_ocr": False}
        assert job.retry_count == 0 and job.max_retries == 3
        assert job.created_by_id == TEST_USER
        assert job.completed_at is None and job.output_data is None

    @pytest.mark.parametrize("job_type,expected", [
        (JobType.THUMBNAIL, JobPriority.HIGH),
        (JobType.OCR, JobPriority.NORMAL),
        (JobType.AI_CLASSIFY, JobPriority.NORMAL),
        (JobType.EMBEDDING, JobPriority.LOW),
        (JobType.COMPRESS, JobPriority.LOW),
    ])
    async def test_default_priority_per_type(self, dispatcher, job_type, expected):
        job = await dispatcher.get(await _enqueue(dispatcher, job_type=job_type))
        assert job.priority is expected

    async def test_explicit_priority_wins(self, dispatcher):
        job = await dispatcher.get(await _enqueue(dispatcher, priority=JobPriority.URGENT))
        assert job.priority is JobPriority.URGENT

    async def test_invalid_params_never_enqueued(self, dispatcher, job_store):
        with pytest.raises(ValidationError, match="THUMBNAIL"):
            await _enqueue(dispatcher, job_type=JobType.THUMBNAIL, params={"size": "huge"})
        assert len(job_store) == 0

    async def test_duplicate_active_job_rejected(self, dispatcher):
        first = await _enqueue(dispatcher)
        with pytest.raises(DuplicateActiveJobError) as exc_info:
            await _enqueue(dispatcher)
        assert exc_info.value.active_job_id == first

    async def test_other_type_or_document_is_not_a_duplicate(self, dispatcher):
        await _enqueue(dispatcher)
        await _enqueue(dispatcher, job_type=JobType.THUMBNAIL)
        await _enqueue(dispatcher, doc_id="doc-2")

    async def test_new_job_allowed_once_previous_is_terminal(self, dispatcher):
        first = await _enqueue(dispatcher)
        await dispatcher.cancel(first)
        second = await _enqueue(dispatcher)
        assert second != first


@pytest.mark.unit
class TestLease:

    async def test_empty_queue_returns_none(self, dispatcher):
        assert await dispatcher.lease("w-1") is None

    async def test_highest_priority_first_then_fifo(self, dispatcher):
        low = await _enqueue(dispatcher, doc_id="d1", job_type=JobType.EMBEDDING)
        normal_a = await _enqueue(dispatcher, doc_id="d2")
        normal_b = await _enqueue(dispatcher, doc_id="d3")
        urgent = await _enqueue(dispatcher, doc_id="d4", priority=JobPriority.URGENT)

        order = [(await dispatcher.lease("w-1")).id for _ in range(4)]
        assert order == [urgent, normal_a, normal_b, low]

    async def test_lease_marks_running_and_emits_started(self, dispatcher, notifier, clock):
        job_id = await _enqueue(dispatcher)
        job = await dispatcher.lease("w-1")

        assert job.id == job_id
        assert job.status is JobStatus.RUNNING
        assert job.worker_id == "w-1"
        assert job.started_at == clock.now()
        assert notifier.for_job(job_id) == [JOB_STARTED]

    async def test_expired_lease_is_requeued_and_late_ack_rejected(self, dispatcher, clock):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")

        clock.advance(61)
        again = await dispatcher.lease("w-2")
        assert again.id == job_id
        assert again.worker_id == "w-2"

        with pytest.raises(LeaseExpiredError):
            await dispatcher.ack(job_id, "w-1", JobOutcome.success({"text": "late"}))

        done = await dispatcher.ack(job_id, "w-2", JobOutcome.success({"text": "x"}))
        assert done.status is JobStatus.COMPLETED

    async def test_reap_reports_counts(self, dispatcher, clock):
        await _enqueue(dispatcher, doc_id="d1")
        await _enqueue(dispatcher, doc_id="d2")
        a = await dispatcher.lease("w-1")
        b = await dispatcher.lease("w-1")
        await dispatcher.ack(b.id, "w-1", JobOutcome.failure(TransientError("503")))

        clock.advance(120)
        assert await dispatcher.reap() == (1, 1)
        assert (await dispatcher.get(a.id)).status is JobStatus.PENDING
        assert (await dispatcher.get(b.id)).status is JobStatus.PENDING


@pytest.mark.unit
class TestHeartbeat:

    async def test_extends_lease_and_records_progress(self, dispatcher, clock):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")

        clock.advance(50)
        job = await dispatcher.heartbeat(job_id, "w-1", progress=40)
        assert job.progress == 40

        clock.advance(50)   # 100 s after lease, but only 50 s after heartbeat
        assert await dispatcher.lease("w-2") is None
        assert (await dispatcher.get(job_id)).status is JobStatus.RUNNING

    async def test_progress_is_clamped(self, dispatcher):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        assert (await dispatcher.heartbeat(job_id, "w-1", progress=250)).progress == 100

    async def test_cancelled_job_raises_cancellation(self, dispatcher):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        await dispatcher.cancel(job_id)

        with pytest.raises(CancellationRequested):
            await dispatcher.heartbeat(job_id, "w-1", progress=50)

    async def test_wrong_worker_loses(self, dispatcher):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        with pytest.raises(LeaseExpiredError):
            await dispatcher.heartbeat(job_id, "w-2")

    async def test_expired_lease_cannot_be_revived(self, dispatcher, clock):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        clock.advance(61)
        with pytest.raises(LeaseExpiredError):
            await dispatcher.heartbeat(job_id, "w-1")


@pytest.mark.unit
class TestAck:

    async def test_success_completes_and_notifies(self, dispatcher, notifier):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        job = await dispatcher.ack(job_id, "w-1", JobOutcome.success({"text": "ok"}))

        assert job.status is JobStatus.COMPLETED
        assert job.output_data == {"text": "ok"}
        assert notifier.for_job(job_id) == [JOB_STARTED, JOB_COMPLETED]

    async def test_retry_not_leasable_before_backoff(self, dispatcher, clock):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        job = await dispatcher.ack(job_id, "w-1", JobOutcome.failure(TransientError("503")))
        assert job.status is JobStatus.RETRYING

        clock.advance(0.5)
        assert await dispatcher.lease("w-1") is None

        clock.advance(0.5)
        again = await dispatcher.lease("w-1")
        assert again.id == job_id
        assert again.retry_count == 1

    async def test_retries_exhausted_then_failed(self, dispatcher, clock, notifier):
        job_id = await _enqueue(dispatcher)
        for _ in range(3):
            clock.advance(10)
            assert (await dispatcher.lease("w-1")).id == job_id
            job = await dispatcher.ack(job_id, "w-1", JobOutcome.failure(TransientError("503")))

        assert job.status is JobStatus.FAILED
        assert job.retry_count == job.max_retries == 3
        assert job.error_code == "TRANSIENT_ERROR"
        assert notifier.for_job(job_id)[-1] == JOB_FAILED

    async def test_fatal_error_fails_immediately(self, dispatcher, notifier):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        job = await dispatcher.ack(job_id, "w-1", JobOutcome.failure(FatalError("corrupt PDF")))

        assert job.status is JobStatus.FAILED
        assert job.retry_count == 0
        assert job.error_message == "corrupt PDF"
        failed = [p for name, p in notifier.events if name == JOB_FAILED]
        assert failed[0]["errorCode"] == "FATAL_ERROR"

    async def test_ack_after_cancel_is_rejected(self, dispatcher, notifier):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        await dispatcher.cancel(job_id, "user request")

        with pytest.raises(JobAlreadyFinalizedError):
            await dispatcher.ack(job_id, "w-1", JobOutcome.success({"text": "x"}))

        job = await dispatcher.get(job_id)
        assert job.status is JobStatus.CANCELLED
        assert job.output_data is None
        assert notifier.for_job(job_id) == [JOB_STARTED, JOB_CANCELLED]


@pytest.mark.unit
class TestCancel:

    async def test_cancel_pending(self, dispatcher):
        job_id = await _enqueue(dispatcher)
        job = await dispatcher.cancel(job_id, "changed my mind")
        assert job.status is JobStatus.CANCELLED
        assert job.cancel_reason == "changed my mind"
        assert job.error_message is None
        assert await dispatcher.is_cancelled(job_id)

    async def test_cancel_retrying_job_is_never_leased_again(self, dispatcher, clock):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        await dispatcher.ack(job_id, "w-1", JobOutcome.failure(TransientError("503")))
        await dispatcher.cancel(job_id)

        clock.advance(3600)
        assert await dispatcher.lease("w-1") is None

    async def test_cancel_terminal_job_raises(self, dispatcher):
        job_id = await _enqueue(dispatcher)
        await dispatcher.cancel(job_id)
        with pytest.raises(JobAlreadyFinalizedError):
            await dispatcher.cancel(job_id)

    async def test_unknown_job(self, dispatcher):
        with pytest.raises(NotFoundError):
            await dispatcher.cancel("nope")


@pytest.mark.unit
class TestCommit:

    async def test_cancel_before_commit_wins(self, dispatcher):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        await dispatcher.cancel(job_id)

        with pytest.raises(CancellationRequested):
            await dispatcher.begin_commit(job_id, "w-1")

    async def test_cancel_after_commit_is_refused(self, dispatcher, notifier):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        job = await dispatcher.begin_commit(job_id, "w-1", progress=95)
        assert job.progress == 95

        with pytest.raises(InvalidTransitionError):
            await dispatcher.cancel(job_id, "too late")

        done = await dispatcher.ack(job_id, "w-1", JobOutcome.success({"text": "ok"}))
        assert done.status is JobStatus.COMPLETED
        assert JOB_CANCELLED not in notifier.for_job(job_id)

    async def test_commit_needs_the_lease(self, dispatcher, clock):
        job_id = await _enqueue(dispatcher)
        await dispatcher.lease("w-1")
        with pytest.raises(LeaseExpiredError):
            await dispatcher.begin_commit(job_id, "w-2")

        clock.advance(61)
        with pytest.raises(LeaseExpiredError):
            await dispatcher.begin_commit(job_id, "w-1")


@pytest.mark.unit
class TestQueries:

    async def test_list_for_document_newest_first(self, dispatcher):
        first = await _enqueue(dispatcher)
        await dispatcher.cancel(first)
        second = await _enqueue(dispatcher)
        thumb = await _enqueue(dispatcher, job_type=JobType.THUMBNAIL)

        jobs = await dispatcher.list_for_document("doc-1", TEST_ORG)
        assert [j.id for j in jobs] == [thumb, second, first]

    async def test_list_failed_is_tenant_scoped(self, dispatcher):
        mine = await _enqueue(dispatcher, doc_id="d1")
        theirs = await _enqueue(dispatcher, doc_id="d2", org=OTHER_ORG)
        for _ in range(2):
            job = await dispatcher.lease("w-1")
            await dispatcher.ack(job.id, "w-1", JobOutcome.failure(FatalError("bad")))

        assert [j.id for j in await dispatcher.list_failed(TEST_ORG)] == [mine]
        assert [j.id for j in await dispatcher.list_failed(OTHER_ORG)] == [theirs]

    async def test_stats_counts_per_status_and_type(self, dispatcher):
        await _enqueue(dispatcher, doc_id="d1")
        await _enqueue(dispatcher, doc_id="d2", job_type=JobType.THUMBNAIL)
        await dispatcher.lease("w-1")

        stats = await dispatcher.stats(TEST_ORG)
        assert stats.total == 2
        assert stats.by_status["PENDING"] == 1
        assert stats.by_status["RUNNING"] == 1
        assert stats.by_status["FAILED"] == 0
        assert stats.by_type["OCR"] == 1
        assert stats.by_type["THUMBNAIL"] == 1
