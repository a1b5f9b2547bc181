"""
FastAPI Application — Entry Point

Document processing pipeline + search API

Architecture:
  - All routes are versioned under /api/v1/
  - Tenant identity arrives from the upstream auth gateway as headers
    (X-Organization-Id, X-User-Id); every service call is scoped by it
  - One Runtime per process holds the stores, dispatcher, worker pool and
    search executor; the worker pool runs inside the API process
  - Structured error envelope on all 4xx/5xx (docpipe.api.errors)

Middleware stack (innermost → outermost):
  1. CORS
  2. Request ID injection — X-Request-ID header on every response
  3. Gzip — compress responses > 1 KB
  4. Request logging — one line per request with latency
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from docpipe.api.errors import register_exception_handlers
from docpipe.api.v1.processing import router as processing_router
from docpipe.api.v1.search import router as search_router
from docpipe.core.config import settings
from docpipe.db.session import check_db_health, dispose_engine
from docpipe.runtime import build_runtime

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


# ---------------------------------------------------------------------------
# Application lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: check DB connectivity, build the runtime, start the workers.
    Shutdown: stop workers (in-flight jobs finish their current step), close pools.
    """
    logger.info(
        "Starting docpipe | env=%s stores=%s workers=%d",
        settings.app_env,
        "sql" if settings.uses_database else "memory",
        settings.worker_concurrency,
    )

    db_health = await check_db_health()
    if db_health["status"] == "error":
        logger.critical("Database health check failed at startup: %s", db_health)
        raise RuntimeError(f"DB unavailable: {db_health}")

    runtime = getattr(app.state, "runtime", None) or build_runtime(settings)
    app.state.runtime = runtime
    if settings.worker_concurrency > 0:
        runtime.pool.start()

    yield

    logger.info("Shutting down docpipe")
    await runtime.aclose()
    await dispose_engine()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title="docpipe",
        description=(
            "Asynchronous document processing jobs (OCR, thumbnails, classification, "
            "embeddings, PDF transforms) and hybrid lexical/semantic document search."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order; last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID", "X-Organization-Id", "X-User-Id"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | org=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request.headers.get("X-Organization-Id", "-"),
        )
        return response

    register_exception_handlers(app)

    app.include_router(processing_router, prefix="/api/v1")
    app.include_router(search_router,     prefix="/api/v1")

    from docpipe.observability.tracing import TracingConfig
    TracingConfig.init()

    # ----------------------------------------------------------------
    # Health endpoints (no tenant, used by load balancer)
    # ----------------------------------------------------------------

    @app.get("/health", tags=["Operations"], summary="Liveness + dependency status")
    async def health(request: Request) -> JSONResponse:
        db_status = await check_db_health()
        runtime = getattr(request.app.state, "runtime", None)
        body = {
            "status": "ok" if db_status["status"] != "error" else "degraded",
            "service": "docpipe",
            "database": db_status,
            "workers": len(runtime.pool.worker_ids) if runtime is not None else 0,
        }
        code = status.HTTP_200_OK if body["status"] == "ok" else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=code, content=body)

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()
