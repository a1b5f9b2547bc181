"""
Document Processing Package
════════════════════════════

One handler per job type, each a transform from (document content, validated
params) to a typed output that the Index Coordinator merges:

  OCR → text        THUMBNAIL → PNG artifact      AI_CLASSIFY → category/tags
  EMBEDDING → vector    PDF_SPLIT / PDF_MERGE / CONVERT / COMPRESS → artifacts

Modules
───────
  base.py       Handler contract, JobContext, provider error classification
  params.py     Per-type input parameter schemas (validated before enqueue)
  outputs.py    Typed handler outputs
  ocr.py        Text extraction (PyMuPDF → python-docx → plain text → Textract)
  thumbnail.py  Page rendering (PyMuPDF)
  classify.py   LLM classification (LangChain + OpenAI)
  embedding.py  Content vectors (LangChain OpenAIEmbeddings)
  pdf.py        Split / merge (pypdf)
  convert.py    Format conversion and compression (PyMuPDF)
  registry.py   Exhaustive JobType → handler table
"""

from docpipe.processing.base import JobContext, ProcessingHandler
from docpipe.processing.outputs import Artifact, HandlerOutput
from docpipe.processing.params import parse_params, validate_params

__all__ = [
    "Artifact",
    "HandlerOutput",
    "JobContext",
    "ProcessingHandler",
    "parse_params",
    "validate_params",
]
