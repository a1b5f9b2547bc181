"""
AI Classification Handler — category, language, tags and summary via an LLM.

LCEL chain:  ChatPromptTemplate | ChatOpenAI | StrOutputParser

The model is asked for JSON. Replies wrapped in ``` fences are unwrapped;
a reply that still doesn't parse is kept as a low-confidence "Other"
classification rather than failing the job, since retrying would just ask
the same model the same question.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

from docpipe.indexing.types import DocumentSnapshot
from docpipe.jobs.types import JobType
from docpipe.processing.base import (
    JobContext,
    ProcessingHandler,
    classify_provider_error,
    require_configured,
    require_text,
)
from docpipe.processing.outputs import ClassificationOutput
from docpipe.processing.params import AiClassifyParams

logger = logging.getLogger(__name__)

MAX_TEXT_CHARS = 4_000
MAX_TAGS = 5
FALLBACK_CATEGORY = "Other"

CLASSIFICATION_PROMPT = """Analyze the following document and provide a classification.

Document Name: {file_name}
Content (first {max_chars} chars): {content}

Provide a JSON response with:
- category: The document category (one of: {categories})
- confidence: Confidence score 0-1
- language: Detected language code (e.g., "en", "pt", "es")
- tags: Array of relevant tags (max {max_tags})
{summary_instruction}
Respond only with valid JSON."""

_FENCE_OPEN  = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?\s*```\s*$")


def parse_classification(raw: str, categories: list[str], *, model: str | None = None) -> ClassificationOutput:
    """Turn the model's reply into a ClassificationOutput, tolerating sloppy JSON."""
    cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", raw.strip())).strip()
    try:
        parsed = json.loads(cleaned)
        if not isinstance(parsed, dict):
            raise ValueError("expected a JSON object")
    except ValueError:
        logger.warning("Unparseable classification reply | preview=%r", raw[:100])
        return ClassificationOutput(
            category=FALLBACK_CATEGORY, confidence=0.0, tags=[], summary=raw[:200] or None, model=model,
        )

    by_lower = {c.lower(): c for c in categories}
    category = by_lower.get(str(parsed.get("category", "")).strip().lower(), FALLBACK_CATEGORY)

    try:
        confidence = float(parsed.get("confidence") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0

    tags = parsed.get("tags")
    tags = [str(t).strip() for t in tags if str(t).strip()][:MAX_TAGS] if isinstance(tags, list) else []

    return ClassificationOutput(
        category=category,
        confidence=min(max(confidence, 0.0), 1.0),
        tags=tags,
        language=parsed.get("language") or None,
        summary=parsed.get("summary") or None,
        model=model,
    )


class DocumentClassifier(ABC):

    @property
    @abstractmethod
    def model(self) -> str: ...

    @abstractmethod
    async def complete(self, file_name: str, content: str, params: AiClassifyParams) -> str:
        """Raw model reply."""


class OpenAIClassifier(DocumentClassifier):

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", temperature: float = 0.3) -> None:
        self._model = model
        self._api_key = api_key
        self._temperature = temperature
        self._chain = None

    @property
    def model(self) -> str:
        return self._model

    def _build_chain(self):
        llm = ChatOpenAI(
            model=self._model,
            api_key=self._api_key,
            temperature=self._temperature,
            max_tokens=500,
        )
        prompt = ChatPromptTemplate.from_messages([("human", CLASSIFICATION_PROMPT)])
        return prompt | llm | StrOutputParser()

    async def complete(self, file_name: str, content: str, params: AiClassifyParams) -> str:
        require_configured(self._api_key, "OpenAI")
        if self._chain is None:
            self._chain = self._build_chain()
        return await self._chain.ainvoke({
            "file_name":  file_name,
            "content":    content,
            "max_chars":  MAX_TEXT_CHARS,
            "categories": ", ".join(params.categories),
            "max_tags":   MAX_TAGS,
            "summary_instruction": (
                "- summary: Brief 1-2 sentence summary\n" if params.generate_summary else ""
            ),
        })


class AiClassifyHandler(ProcessingHandler[AiClassifyParams]):
    job_type = JobType.AI_CLASSIFY

    def __init__(self, classifier: DocumentClassifier) -> None:
        self._classifier = classifier

    async def process(
        self, document: DocumentSnapshot, params: AiClassifyParams, ctx: JobContext,
    ) -> ClassificationOutput:
        text = require_text(document)
        await ctx.checkpoint(20)

        try:
            raw = await self._classifier.complete(document.name, text[:MAX_TEXT_CHARS], params)
        except Exception as exc:
            raise classify_provider_error(exc, "OpenAI") from exc
        await ctx.checkpoint(80)

        result = parse_classification(raw, params.categories, model=self._classifier.model)
        if not params.generate_summary and result.summary is not None:
            result = ClassificationOutput(
                category=result.category,
                confidence=result.confidence,
                tags=result.tags,
                language=result.language,
                summary=None,
                model=result.model,
            )

        logger.info(
            "Classified | doc=%s category=%s confidence=%.2f tags=%d",
            document.id, result.category, result.confidence, len(result.tags),
        )
        return result
