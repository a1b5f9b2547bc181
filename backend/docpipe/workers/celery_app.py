"""
Celery Application Factory

Periodic maintenance for the SQL-backed deployment. Job execution itself runs
in the in-process WorkerPool; Celery only drives the sweeps that must keep
happening even when no API process is leasing work:

  jobs.maintenance   — lease reaper / retry promoter (Celery Beat)
  system.health      — internal health-check tasks

Broker: Redis by default (CELERY_BROKER_URL); RabbitMQ works unchanged.
Task payloads carry no document content, only ids.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from docpipe.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

JOBS_EXCHANGE = Exchange("jobs", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "jobs.maintenance",
        exchange=JOBS_EXCHANGE,
        routing_key="jobs.maintenance",
        durable=True,
    ),
    Queue(
        "system.health",
        Exchange("system", type="direct"),
        routing_key="system.health",
        durable=True,
    ),
)

TASK_ROUTES = {
    "docpipe.workers.tasks.sweep_jobs":    {"queue": "jobs.maintenance"},
    "docpipe.workers.tasks.health_check":  {"queue": "system.health"},
}


def create_celery_app() -> Celery:
    app = Celery("docpipe")

    app.conf.update(
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="jobs.maintenance",
        task_default_exchange="jobs",
        task_default_routing_key="jobs.maintenance",

        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,

        # A sweep must finish well inside one interval
        task_soft_time_limit=max(settings.sweep_interval_seconds - 5, 5),
        task_time_limit=max(settings.sweep_interval_seconds, 10),

        # Job state lives in PostgreSQL, not in Celery results
        result_expires=3600,

        timezone="UTC",
        enable_utc=True,

        beat_schedule={
            "sweep-processing-jobs": {
                "task":     "docpipe.workers.tasks.sweep_jobs",
                "schedule": settings.sweep_interval_seconds,
                "options":  {"queue": "jobs.maintenance"},
            },
        },

        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["docpipe.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: task lifecycle logging
# ---------------------------------------------------------------------------

@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info("Task start | task_id=%s task=%s", task_id, task.name)


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s result=%s",
        task_id, task.name, state, retval,
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s error=%s",
        task_id, exception,
        exc_info=True,
    )
