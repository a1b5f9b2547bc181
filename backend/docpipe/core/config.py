"""
Application configuration via environment variables (12-factor).
Pydantic BaseSettings validates and coerces all values at startup.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------
    database_url: str = ""   # asyncpg DSN; empty = in-memory stores (local dev / tests)

    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_echo_sql: bool = False   # set True in local dev to log queries

    # ------------------------------------------------------------------
    # Storage: document content + derived artifacts
    # ------------------------------------------------------------------
    storage_backend: str = "s3"   # "s3" | "memory"
    aws_region: str = "us-east-1"
    s3_bucket: str = "docpipe-documents"

    # ------------------------------------------------------------------
    # Job queue / worker pool
    # ------------------------------------------------------------------
    worker_concurrency:           int   = 4
    worker_poll_interval_seconds: float = 1.0
    job_lease_seconds:            int   = 300
    job_default_max_retries:      int   = 3
    job_retry_base_ms:            int   = 2_000     # first retry waits 2 s
    job_retry_cap_ms:             int   = 300_000   # never wait more than 5 min

    celery_broker_url:     str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    sweep_interval_seconds: int = 30

    # ------------------------------------------------------------------
    # Search index coordinator
    # ------------------------------------------------------------------
    index_merge_max_attempts: int = 3

    # ------------------------------------------------------------------
    # Embeddings / AI classification
    # ------------------------------------------------------------------
    openai_api_key:       str = ""
    embedding_model:      str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_max_chars:  int = 32_000   # ~8k tokens per chunk
    classify_model:       str = "gpt-4o-mini"

    # OCR fallback for scanned pages / images
    ocr_backend: str = "textract"   # "textract" | "none"

    # ------------------------------------------------------------------
    # Reranking
    # ------------------------------------------------------------------
    cohere_api_key:      str = ""    # leave empty to disable reranking
    cohere_rerank_model: str = "rerank-english-v3.0"
    rerank_top_k:        int = 50

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    search_result_cap:              int   = 1_000
    search_default_limit:           int   = 20
    search_default_threshold:       float = 0.7
    hybrid_default_text_weight:     float = 0.3
    hybrid_default_semantic_weight: float = 0.7
    hybrid_default_threshold:       float = 0.5
    suggestion_max_distance:        int   = 2

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    notification_webhook_url: str = ""   # empty = log-only notifier

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------
    langsmith_api_key: str = ""
    langsmith_project: str = "docpipe"

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    app_env: str = "development"   # development | staging | production
    debug: bool = False

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def uses_database(self) -> bool:
        return bool(self.database_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
