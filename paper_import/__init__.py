"""Exam-paper import pipeline: PDF -> validated question and lesson records.

A local Ollama model is used as an extraction oracle whose output is never
trusted as-is.

Core components:
  - pdf_text: PyMuPDF text layer, normalization, chunking, input limits
  - rasterizer: pdftoppm page images with a scoped temporary workspace
  - models: Ollama client (text + vision) with per-call deadlines
  - parsing: JSON recovery from free-form model replies
  - validate: coercion of untyped items into typed records
  - merge: page-spanning question merge and chunk deduplication
  - extract: the two job entry points
"""

from .errors import (
    ExtractionError,
    PreconditionError,
    ServiceUnavailableError,
    UnitServiceError,
    UnitTimeoutError,
)
from .extract import run_text_extraction, run_vision_extraction
from .models import Deadline, OllamaClient
from .records import ExtractedLesson, ExtractedQuestion, ExtractionResult

__all__ = [
    "run_text_extraction",
    "run_vision_extraction",
    "OllamaClient",
    "Deadline",
    "ExtractionResult",
    "ExtractedQuestion",
    "ExtractedLesson",
    "ExtractionError",
    "PreconditionError",
    "ServiceUnavailableError",
    "UnitServiceError",
    "UnitTimeoutError",
]
