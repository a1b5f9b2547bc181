"""
Integration Tests — Processing + Search API
═══════════════════════════════════════════
These tests exercise the FULL FastAPI routing stack, including:
  - Tenant header dependency
  - Request parsing and camelCase wire format
  - Domain error → status code mapping and the error envelope
  - Dispatcher, worker pool, index coordinator and search executor

What is mocked vs real
──────────────────────
  ✅ Real: FastAPI routing, Pydantic schemas, ProcessingService, SearchService,
           JobDispatcher, WorkerPool, IndexCoordinator, QueryExecutor
  🔲 Fake: embedding model, reranker, notifier (tests/conftest.py)
  🔲 In-memory: job store, document store, content storage

The ASGI transport does not run the lifespan, so each test installs its own
Runtime on app.state before issuing requests.

How to run
──────────
  pytest -m integration tests/integration/test_api.py -v
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from docpipe.core.config import settings
from docpipe.jobs.types import JobType
from docpipe.main import create_app
from docpipe.runtime import Runtime, build_runtime
from tests.conftest import OTHER_ORG, TEST_ORG, TEST_USER

HEADERS = {"X-Organization-Id": TEST_ORG, "X-User-Id": TEST_USER}


@pytest.fixture
def runtime(clock, document_store, content_storage, notifier, embedder, reranker) -> Runtime:
    return build_runtime(
        settings,
        clock=clock,
        documents=document_store,
        storage=content_storage,
        notifier=notifier,
        embedder=embedder,
        reranker=reranker,
    )


@pytest.fixture
async def client(runtime):
    app = create_app()
    app.state.runtime = runtime
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test", headers=HEADERS) as c:
        yield c


async def _trigger(client: AsyncClient, document_id: str, job_type: str = "OCR", **body) -> dict:
    response = await client.post(
        "/api/v1/processing/jobs", json={"documentId": document_id, "jobType": job_type, **body},
    )
    assert response.status_code == 202, response.text
    return response.json()


# ─────────────────────────────────────────────────────────────────────────────
# Processing
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestTriggerJob:

    async def test_accepted_with_defaults(self, client, make_document):
        doc = make_document()
        body = await _trigger(client, doc.id, "THUMBNAIL")
        assert body["status"] == "PENDING"

        job = (await client.get(f"/api/v1/processing/jobs/{body['jobId']}")).json()
        assert job["jobType"] == "THUMBNAIL"
        assert job["priority"] == "HIGH"
        assert job["inputParams"] == {"size": "medium", "page": 1}
        assert job["createdById"] == TEST_USER
        assert job["completedAt"] is None

    async def test_missing_tenant_header(self, client, make_document):
        doc = make_document()
        response = await client.post(
            "/api/v1/processing/jobs",
            json={"documentId": doc.id, "jobType": "OCR"},
            headers={"X-Organization-Id": ""},
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "MISSING_TENANT"

    async def test_unknown_document(self, client):
        response = await client.post("/api/v1/processing/jobs", json={"documentId": "ghost", "jobType": "OCR"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_other_tenants_document_looks_missing(self, client, make_document):
        doc = make_document(organization_id=OTHER_ORG)
        response = await client.post("/api/v1/processing/jobs", json={"documentId": doc.id, "jobType": "OCR"})
        assert response.status_code == 404

    async def test_invalid_params(self, client, make_document):
        doc = make_document()
        response = await client.post(
            "/api/v1/processing/jobs",
            json={"documentId": doc.id, "jobType": "PDF_SPLIT", "inputParams": {}},
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "PDF_SPLIT" in error["message"]

    async def test_unknown_job_type(self, client, make_document):
        doc = make_document()
        response = await client.post("/api/v1/processing/jobs", json={"documentId": doc.id, "jobType": "FAX"})
        assert response.status_code == 422
        assert response.json()["error"]["details"]

    async def test_duplicate_active_job(self, client, make_document):
        doc = make_document()
        await _trigger(client, doc.id)
        response = await client.post("/api/v1/processing/jobs", json={"documentId": doc.id, "jobType": "OCR"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DUPLICATE_ACTIVE_JOB"


@pytest.mark.integration
class TestJobLifecycle:

    async def test_embedding_job_then_semantic_search(self, client, runtime, make_document):
        doc = make_document(text="Invoice for consulting services")
        created = await _trigger(client, doc.id, "EMBEDDING")

        await runtime.pool.run_once("worker-0")

        job = (await client.get(f"/api/v1/processing/jobs/{created['jobId']}")).json()
        assert job["status"] == "COMPLETED"
        assert job["progress"] == 100
        assert job["outputData"]["dimensions"] == 3

        response = await client.post("/api/v1/search/semantic", json={"query": "consulting invoice"})
        assert response.status_code == 200
        body = response.json()
        assert [r["id"] for r in body["results"]] == [doc.id]
        assert body["results"][0]["semanticScore"] >= 0.7

    async def test_cancel_then_conflict(self, client, make_document):
        doc = make_document()
        created = await _trigger(client, doc.id)
        url = f"/api/v1/processing/jobs/{created['jobId']}/cancel"

        first = await client.post(url, json={"reason": "not needed"})
        assert first.status_code == 200
        assert first.json()["status"] == "CANCELLED"
        assert first.json()["cancelReason"] == "not needed"

        second = await client.post(url)
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "JOB_ALREADY_FINALIZED"

    async def test_retry_merges_params(self, client, make_document):
        doc = make_document()
        created = await _trigger(client, doc.id, "THUMBNAIL", inputParams={"size": "small", "page": 2})
        await client.post(f"/api/v1/processing/jobs/{created['jobId']}/cancel")

        retried = await client.post(
            f"/api/v1/processing/jobs/{created['jobId']}/retry", json={"modifiedParams": {"size": "large"}},
        )
        assert retried.status_code == 202
        new_id = retried.json()["jobId"]
        assert new_id != created["jobId"]

        job = (await client.get(f"/api/v1/processing/jobs/{new_id}")).json()
        assert job["inputParams"] == {"size": "large", "page": 2}

    async def test_retry_active_job_conflicts(self, client, make_document):
        doc = make_document()
        created = await _trigger(client, doc.id)
        response = await client.post(f"/api/v1/processing/jobs/{created['jobId']}/retry")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_TRANSITION"

    async def test_other_tenant_cannot_read_job(self, client, make_document):
        doc = make_document()
        created = await _trigger(client, doc.id)
        response = await client.get(
            f"/api/v1/processing/jobs/{created['jobId']}", headers={"X-Organization-Id": OTHER_ORG},
        )
        assert response.status_code == 404

    async def test_document_history_failed_list_and_stats(self, client, runtime, make_document):
        doc = make_document(text=None)
        await _trigger(client, doc.id, "AI_CLASSIFY")     # fails: no extracted text
        await runtime.pool.run_once("worker-0")
        await _trigger(client, doc.id, "OCR")

        history = (await client.get(f"/api/v1/processing/documents/{doc.id}/jobs")).json()
        assert history["total"] == 2
        assert [j["jobType"] for j in history["jobs"]] == ["OCR", "AI_CLASSIFY"]

        failed = (await client.get("/api/v1/processing/jobs/failed")).json()
        assert failed["total"] == 1
        assert failed["jobs"][0]["errorCode"] == "FATAL_ERROR"
        assert "Run OCR first" in failed["jobs"][0]["errorMessage"]

        stats = (await client.get("/api/v1/processing/stats")).json()
        assert stats["total"] == 2
        assert stats["byStatus"]["FAILED"] == 1
        assert stats["byStatus"]["PENDING"] == 1
        assert set(stats["byType"]) == {t.value for t in JobType}


# ─────────────────────────────────────────────────────────────────────────────
# Search
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestSearch:

    async def test_fulltext_with_facets(self, client, make_document):
        make_document(name="Invoice March.pdf", text="Amount due", category="Invoice")
        make_document(name="Contract.pdf", text="Terms and conditions")

        response = await client.post("/api/v1/search", json={"query": "invoice"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["truncated"] is False
        assert body["facets"]["categories"] == {"Invoice": 1}
        assert body["meta"]["mode"] == "fulltext"
        assert "tookMs" in body

    async def test_zero_results_carry_suggestions(self, client, make_document):
        make_document(text="Quarterly invoice")
        body = (await client.post("/api/v1/search", json={"query": "quartrly"})).json()
        assert body["total"] == 0
        assert body["suggestions"] == ["quarterly"]

    async def test_filters_on_the_wire(self, client, make_document):
        keep = make_document(text="report", tags=("q3",))
        make_document(text="report", tags=("q4",))
        body = (await client.post(
            "/api/v1/search", json={"query": "report", "filters": {"tagsAny": ["q3"]}},
        )).json()
        assert [r["id"] for r in body["results"]] == [keep.id]

    async def test_hybrid_degrades_with_warning(self, client, embedder, make_document):
        make_document(text="invoice")
        embedder.error = ConnectionError("embedding service down")

        response = await client.post("/api/v1/search/hybrid", json={"query": "invoice"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["meta"]["warnings"]
        assert body["meta"]["semanticWeight"] == 0.0

    async def test_semantic_unavailable_is_503(self, client, embedder, make_document):
        make_document(text="invoice", vector=[1.0, 0.0, 0.0])
        embedder.error = ConnectionError("embedding service down")

        response = await client.post("/api/v1/search/semantic", json={"query": "invoice"})

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["code"] == "SEMANTIC_UNAVAILABLE"
        assert error["retryable"] is True

    async def test_blank_query_rejected(self, client):
        response = await client.post("/api/v1/search", json={"query": "   "})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_suggest(self, client, make_document):
        make_document(name="Invoice March.pdf")
        response = await client.get("/api/v1/search/suggest", params={"q": "inv", "limit": 5})
        assert response.status_code == 200
        assert response.json()["suggestions"][0] == "invoice"

    async def test_suggest_limit_bounds(self, client):
        response = await client.get("/api/v1/search/suggest", params={"q": "inv", "limit": 50})
        assert response.status_code == 422


@pytest.mark.integration
class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["database"] == {"status": "disabled"}
        assert response.headers["X-Request-ID"]
