"""
Process-wide wiring.

Builds every collaborator once from Settings:

  DATABASE_URL set     → SQL job + document stores (asyncpg)
  DATABASE_URL empty   → in-memory stores (local dev, tests)

The FastAPI app and the Celery worker each build one Runtime at startup;
tests build their own with fakes passed as overrides.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from docpipe.core.clock import Clock, SystemClock
from docpipe.core.config import Settings
from docpipe.indexing.coordinator import IndexCoordinator
from docpipe.indexing.store import DocumentStore, InMemoryDocumentStore
from docpipe.jobs.dispatcher import JobDispatcher
from docpipe.jobs.state_machine import JobStateMachine, RetryPolicy
from docpipe.jobs.store import InMemoryJobStore, JobStore
from docpipe.notifications import Notifier, build_notifier
from docpipe.processing.embedding import OpenAITextEmbedder, TextEmbedder
from docpipe.processing.registry import HandlerRegistry, build_default_registry
from docpipe.search.executor import QueryExecutor
from docpipe.search.ranking import RankingEngine
from docpipe.search.reranker import CohereReranker, Reranker
from docpipe.search.semantic import QueryEmbedder
from docpipe.services.processing import ProcessingService
from docpipe.services.search import SearchService
from docpipe.storage.content import ContentStorage, build_content_storage
from docpipe.workers.pool import WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings:    Settings
    clock:       Clock
    jobs:        JobStore
    documents:   DocumentStore
    storage:     ContentStorage
    notifier:    Notifier
    dispatcher:  JobDispatcher
    registry:    HandlerRegistry
    coordinator: IndexCoordinator
    pool:        WorkerPool
    executor:    QueryExecutor
    processing:  ProcessingService
    search:      SearchService

    async def aclose(self) -> None:
        await self.pool.stop()
        await self.notifier.aclose()


def _sql_stores(settings: Settings) -> tuple[JobStore, DocumentStore]:
    from docpipe.db.session import get_session_factory
    from docpipe.indexing.sql_store import SqlDocumentStore
    from docpipe.jobs.sql_store import SqlJobStore

    factory = get_session_factory()
    return SqlJobStore(factory), SqlDocumentStore(factory)


def build_runtime(
    settings: Settings,
    *,
    clock: Clock | None = None,
    jobs: JobStore | None = None,
    documents: DocumentStore | None = None,
    storage: ContentStorage | None = None,
    notifier: Notifier | None = None,
    embedder: TextEmbedder | None = None,
    reranker: Reranker | None = None,
    registry: HandlerRegistry | None = None,
) -> Runtime:
    clock = clock or SystemClock()
    if jobs is None or documents is None:
        if settings.uses_database:
            sql_jobs, sql_docs = _sql_stores(settings)
        else:
            sql_jobs, sql_docs = InMemoryJobStore(), InMemoryDocumentStore()
        jobs = jobs or sql_jobs
        documents = documents or sql_docs

    storage = storage or build_content_storage(
        settings.storage_backend, bucket=settings.s3_bucket, region=settings.aws_region,
    )
    notifier = notifier or build_notifier(settings.notification_webhook_url)
    embedder = embedder or OpenAITextEmbedder(
        settings.openai_api_key, settings.embedding_model, settings.embedding_dimensions,
    )
    reranker = reranker or CohereReranker(settings.cohere_rerank_model, settings.cohere_api_key)

    dispatcher = JobDispatcher(
        jobs,
        clock=clock,
        state_machine=JobStateMachine(RetryPolicy(
            base_ms=settings.job_retry_base_ms, cap_ms=settings.job_retry_cap_ms,
        )),
        notifier=notifier,
        lease_seconds=settings.job_lease_seconds,
        default_max_retries=settings.job_default_max_retries,
    )
    registry = registry or build_default_registry(
        settings, storage=storage, documents=documents, embedder=embedder,
    )
    coordinator = IndexCoordinator(documents, max_attempts=settings.index_merge_max_attempts)
    pool = WorkerPool(
        dispatcher, registry, coordinator, documents,
        concurrency=settings.worker_concurrency,
        poll_interval=settings.worker_poll_interval_seconds,
    )
    executor = QueryExecutor(
        documents,
        RankingEngine(QueryEmbedder(embedder), reranker, rerank_top_k=settings.rerank_top_k),
        result_cap=settings.search_result_cap,
        suggestion_max_distance=settings.suggestion_max_distance,
    )

    logger.info(
        "Runtime built | stores=%s storage=%s workers=%d",
        "sql" if settings.uses_database else "memory",
        settings.storage_backend, settings.worker_concurrency,
    )
    return Runtime(
        settings=settings,
        clock=clock,
        jobs=jobs,
        documents=documents,
        storage=storage,
        notifier=notifier,
        dispatcher=dispatcher,
        registry=registry,
        coordinator=coordinator,
        pool=pool,
        executor=executor,
        processing=ProcessingService(dispatcher, documents),
        search=SearchService(executor, settings),
    )
