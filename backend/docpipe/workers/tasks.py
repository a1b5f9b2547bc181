"""
Celery Tasks — job maintenance

Task: sweep_jobs
  Scheduled by Celery Beat every SWEEP_INTERVAL_SECONDS.
  1. Promote RETRYING jobs whose backoff has elapsed → PENDING
  2. Requeue RUNNING jobs whose lease expired (worker crashed) → PENDING
  Both steps re-check each row under its lock, so overlapping sweeps and
  the workers' own reaping never double-apply a transition.

Task: health_check
  Liveness probe for the Celery worker.
"""

from __future__ import annotations

import asyncio
import logging

from docpipe.core.config import settings
from docpipe.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                future = pool.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Lease reaper / retry promoter
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docpipe.workers.tasks.sweep_jobs",
    bind=False,
    acks_late=True,
)
def sweep_jobs() -> dict[str, int]:
    return run_async(_sweep_jobs_async())


async def _sweep_jobs_async() -> dict[str, int]:
    if not settings.uses_database:
        logger.info("Sweep skipped | reason=no DATABASE_URL (in-memory workers reap inline)")
        return {"promoted": 0, "requeued": 0}

    from docpipe.db.session import dispose_engine, get_session_factory
    from docpipe.jobs.dispatcher import JobDispatcher
    from docpipe.jobs.sql_store import SqlJobStore
    from docpipe.jobs.state_machine import JobStateMachine, RetryPolicy
    from docpipe.notifications import build_notifier

    notifier = build_notifier(settings.notification_webhook_url)
    dispatcher = JobDispatcher(
        SqlJobStore(get_session_factory()),
        state_machine=JobStateMachine(RetryPolicy(
            base_ms=settings.job_retry_base_ms, cap_ms=settings.job_retry_cap_ms,
        )),
        notifier=notifier,
        lease_seconds=settings.job_lease_seconds,
        default_max_retries=settings.job_default_max_retries,
    )
    try:
        promoted, requeued = await dispatcher.reap()
    finally:
        await notifier.aclose()
        # Each task run gets a fresh event loop; pooled connections can't outlive it
        await dispose_engine()

    logger.info("Sweep done | promoted=%d requeued=%d", promoted, requeued)
    return {"promoted": promoted, "requeued": requeued}


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="docpipe.workers.tasks.health_check")
def health_check() -> dict[str, str]:
    return {"status": "ok", "worker": "healthy"}
