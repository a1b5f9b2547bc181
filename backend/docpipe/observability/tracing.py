"""
Observability Tracing — LangSmith + span logging

Two layers:

  LangSmith (hosted):
    - Activated purely through environment variables; LangChain reads
      LANGCHAIN_TRACING_V2 / LANGCHAIN_API_KEY / LANGCHAIN_PROJECT on import.
    - Covers every OpenAIEmbeddings / ChatOpenAI call made by the embedding
      and classification handlers.

  @traced(name):
    - Wraps an async function with timing and failure logging.
    - Always active, independent of any tracing backend.
    - Applied to handler execution, index merges and search execution.

Environment variables:
  LANGCHAIN_TRACING_V2=true
  LANGCHAIN_API_KEY=ls__...
  LANGCHAIN_PROJECT=docpipe
"""

from __future__ import annotations

import functools
import logging
import os
import time
from typing import Any, Callable, Coroutine, TypeVar

from docpipe.core.errors import PipelineError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])


# ---------------------------------------------------------------------------
# TracingConfig: initialise at app / worker startup
# ---------------------------------------------------------------------------

class TracingConfig:
    """
    Call once at startup::

        from docpipe.observability.tracing import TracingConfig
        TracingConfig.init()
    """

    _initialised: bool = False

    @classmethod
    def init(cls) -> None:
        if cls._initialised:
            return
        cls._initialised = True
        cls._init_langsmith()

    @staticmethod
    def _init_langsmith() -> None:
        from docpipe.core.config import settings

        if settings.langsmith_api_key and not os.environ.get("LANGCHAIN_API_KEY"):
            os.environ["LANGCHAIN_TRACING_V2"] = "true"
            os.environ["LANGCHAIN_API_KEY"]     = settings.langsmith_api_key
            os.environ["LANGCHAIN_PROJECT"]     = settings.langsmith_project
            logger.info("LangSmith tracing enabled | project=%s", settings.langsmith_project)
        elif os.environ.get("LANGCHAIN_TRACING_V2") == "true":
            logger.info(
                "LangSmith tracing active (from env) | project=%s",
                os.environ.get("LANGCHAIN_PROJECT", "default"),
            )
        else:
            logger.debug("LangSmith tracing disabled (LANGCHAIN_TRACING_V2 not set)")


# ---------------------------------------------------------------------------
# @traced decorator
# ---------------------------------------------------------------------------

def traced(name: str | None = None) -> Callable[[F], F]:
    """
    Instrument an async function with timing and error logging.

    Domain errors (PipelineError) are expected control flow for the
    dispatcher, so they are logged at WARNING without a traceback; anything
    else is logged at ERROR with exc_info.

    Usage::

        @traced("index.merge")
        async def merge(...): ...

        @traced()   # uses the function's qualified name
        async def execute(...): ...
    """
    def decorator(func: F) -> F:
        span_name = name or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            t0 = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except PipelineError as exc:
                elapsed_ms = (time.perf_counter() - t0) * 1000
                logger.warning(
                    "trace | span=%s elapsed_ms=%.1f code=%s error=%s",
                    span_name, elapsed_ms, exc.code, exc.message,
                )
                raise
            except Exception as exc:
                elapsed_ms = (time.perf_counter() - t0) * 1000
                logger.error(
                    "trace | span=%s elapsed_ms=%.1f error=%s",
                    span_name, elapsed_ms, exc, exc_info=True,
                )
                raise
            elapsed_ms = (time.perf_counter() - t0) * 1000
            logger.debug("trace | span=%s elapsed_ms=%.1f ok", span_name, elapsed_ms)
            return result

        return wrapper  # type: ignore[return-value]
    return decorator
