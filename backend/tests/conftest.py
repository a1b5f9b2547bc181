"""
Root conftest.py — Shared fixtures for ALL tests

Fixture hierarchy (all function-scoped):
  clock, job_store, document_store, content_storage, notifier, id_factory
  dispatcher           — JobDispatcher wired to the fixtures above
  make_document        — DocumentSnapshot factory, stored in document_store
  embedder / reranker / classifier — deterministic fakes, no network
  sample_pdf_bytes     — small PDFs built with pypdf

Environment strategy:
  - DATABASE_URL is empty: every store is in-memory, no PostgreSQL needed.
  - Storage backend is "memory": no S3 / LocalStack needed.
  - No OpenAI / Cohere keys: every model call goes through a fake.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only (fast, no I/O)
  pytest -m integration           # API tests through the ASGI app
"""

from __future__ import annotations

import io
import itertools
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import pytest
from pypdf import PdfWriter

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any docpipe imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ["DATABASE_URL"] = ""
os.environ.setdefault("STORAGE_BACKEND",        "memory")
os.environ.setdefault("OPENAI_API_KEY",         "")
os.environ.setdefault("COHERE_API_KEY",         "")
os.environ.setdefault("OCR_BACKEND",            "none")
os.environ.setdefault("CELERY_BROKER_URL",      "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND",  "cache+memory://")
os.environ.setdefault("APP_ENV",                "development")
os.environ.setdefault("WORKER_CONCURRENCY",     "0")

from docpipe.core.clock import ManualClock                          # noqa: E402
from docpipe.core.errors import TransientError                      # noqa: E402
from docpipe.indexing.store import InMemoryDocumentStore            # noqa: E402
from docpipe.indexing.types import (                                # noqa: E402
    Classification,
    DocumentSnapshot,
    SearchableRepresentation,
)
from docpipe.jobs.dispatcher import JobDispatcher                   # noqa: E402
from docpipe.jobs.state_machine import JobStateMachine, RetryPolicy  # noqa: E402
from docpipe.jobs.store import InMemoryJobStore                     # noqa: E402
from docpipe.jobs.types import JobType                              # noqa: E402
from docpipe.notifications import Notifier                          # noqa: E402
from docpipe.processing.base import JobContext, ProcessingHandler   # noqa: E402
from docpipe.processing.classify import DocumentClassifier          # noqa: E402
from docpipe.processing.embedding import TextEmbedder               # noqa: E402
from docpipe.processing.outputs import HandlerOutput                # noqa: E402
from docpipe.search.reranker import Reranker                        # noqa: E402
from docpipe.storage.content import InMemoryContentStorage          # noqa: E402

TEST_ORG   = "org-test-0001"
OTHER_ORG  = "org-other-0002"
TEST_USER  = "user-test-0001"
EPOCH      = datetime(2024, 1, 1, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────

class RecordingNotifier(Notifier):
    """Captures emitted events in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def for_job(self, job_id: str) -> list[str]:
        return [name for name, payload in self.events if payload.get("jobId") == job_id]


class FakeEmbedder(TextEmbedder):
    """
    Deterministic 3-d embedder.

    `vectors` maps an exact text (query or chunk) to its vector; anything
    else embeds to `default`. Set `error` to make every call raise it.
    """

    def __init__(self, vectors: dict[str, list[float]] | None = None, *, default: list[float] | None = None) -> None:
        self.model = "fake-embed-3"
        self.dimensions = 3
        self.vectors = dict(vectors or {})
        self.default = default or [1.0, 0.0, 0.0]
        self.error: Exception | None = None
        self.calls: list[list[str]] = []

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [self.vectors.get(t, self.default) for t in texts]

    async def embed_query(self, text: str) -> list[float]:
        self.calls.append([text])
        if self.error is not None:
            raise self.error
        return self.vectors.get(text, self.default)


class FakeReranker(Reranker):
    """Scores each text with `score_fn`; `None` result simulates an outage."""

    def __init__(self, score_fn: Callable[[str, str], float] | None = None, *, available: bool = True) -> None:
        self._score_fn = score_fn or (lambda q, text: float(len(text)))
        self._available = available
        self.fail = False
        self.seen: list[list[str]] = []

    @property
    def available(self) -> bool:
        return self._available

    async def score(self, query: str, documents: list[str]) -> list[float] | None:
        self.seen.append(list(documents))
        if self.fail:
            return None
        return [self._score_fn(query, text) for text in documents]


class FakeClassifier(DocumentClassifier):

    def __init__(self, reply: str = '{"category": "Invoice", "confidence": 0.92, "tags": ["billing"]}') -> None:
        self.reply = reply
        self.error: Exception | None = None
        self.prompts: list[tuple[str, str]] = []

    @property
    def model(self) -> str:
        return "fake-chat"

    async def complete(self, file_name: str, content: str, params) -> str:
        self.prompts.append((file_name, content))
        if self.error is not None:
            raise self.error
        return self.reply


Behavior = Callable[[DocumentSnapshot, Any, JobContext], Awaitable[HandlerOutput]]


class ScriptedHandler(ProcessingHandler):
    """Handler whose behaviour is supplied by the test."""

    def __init__(self, job_type: JobType, behavior: Behavior | None = None) -> None:
        self.job_type = job_type
        self.behavior = behavior
        self.calls = 0

    async def process(self, document, params, ctx):
        self.calls += 1
        if self.behavior is None:
            raise TransientError(f"no behaviour scripted for {self.job_type.value}")
        return await self.behavior(document, params, ctx)


# ─────────────────────────────────────────────────────────────────────────────
# Core fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(EPOCH)


@pytest.fixture
def id_factory() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"job-{next(counter):04d}"


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def content_storage() -> InMemoryContentStorage:
    return InMemoryContentStorage()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(base_ms=1_000, cap_ms=8_000)


@pytest.fixture
def dispatcher(job_store, clock, id_factory, notifier, retry_policy) -> JobDispatcher:
    return JobDispatcher(
        job_store,
        clock=clock,
        id_factory=id_factory,
        state_machine=JobStateMachine(retry_policy),
        notifier=notifier,
        lease_seconds=60,
        default_max_retries=3,
    )


@pytest.fixture
def make_document(document_store, content_storage) -> Callable[..., DocumentSnapshot]:
    """
    Factory: build a DocumentSnapshot, store it and (optionally) its bytes.

    Keyword shortcuts: text, vector, category, ctags set the representation.
    """
    counter = itertools.count(1)

    def _build(
        *,
        id: str | None = None,
        name: str | None = None,
        organization_id: str = TEST_ORG,
        mime_type: str = "application/pdf",
        content: bytes | None = None,
        text: str | None = None,
        vector: list[float] | None = None,
        category: str | None = None,
        ctags: tuple[str, ...] = (),
        created_offset_s: int = 0,
        **fields: Any,
    ) -> DocumentSnapshot:
        n = next(counter)
        size_bytes = fields.pop("size_bytes", 1_000)
        rep = SearchableRepresentation(
            extracted_text=text,
            content_vector=tuple(vector) if vector is not None else None,
            embedding_model="fake-embed-3" if vector is not None else None,
            classification=Classification(category, 0.9, tuple(ctags)) if category else None,
        )
        doc = DocumentSnapshot(
            id=id or f"doc-{n:04d}",
            organization_id=organization_id,
            name=name or f"Document {n}.pdf",
            mime_type=mime_type,
            size_bytes=len(content) if content is not None else size_bytes,
            created_at=fields.pop("created_at", EPOCH + timedelta(seconds=created_offset_s)),
            representation=rep,
            **fields,
        )
        document_store.put(doc)
        if content is not None:
            content_storage.put_document(doc, content)
        return doc

    return _build


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def reranker() -> FakeReranker:
    return FakeReranker()


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


# ─────────────────────────────────────────────────────────────────────────────
# Sample file fixtures
# ─────────────────────────────────────────────────────────────────────────────

def build_pdf(pages: int, width: float = 612, height: float = 792) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=width, height=height)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Five blank Letter pages."""
    return build_pdf(5)
