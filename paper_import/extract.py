"""Job orchestration: PDF bytes in, ExtractionResult out.

Two modes:
  Text:   PyMuPDF text layer -> chunks -> text model, records deduplicated
  Vision: pdftoppm page images -> vision model, questions merged across pages

Preconditions (input limits, service and model availability, rasterizer)
are checked once, before any unit work, and raise PreconditionError.
After that a failing unit (timeout, service error, unparseable reply) only
costs its own records: it is logged and the job moves on.

Usage:
    from paper_import.extract import run_text_extraction, run_vision_extraction

    result = run_vision_extraction(pdf_bytes, {"filename": "prelim_p1.pdf"})
    print(len(result.questions), "questions")
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

import requests

from .config import Settings
from .errors import InferenceError, PreconditionError, ServiceUnavailableError
from .merge import PageMerger, dedupe_lessons, dedupe_questions
from .models import TEXT_MODE, Deadline, OllamaClient
from .parsing import ModelPayload, parse_model_response
from .pdf_text import (
    check_page_count,
    check_pdf_limits,
    count_pages,
    extract_pdf_text,
    split_into_chunks,
)
from .rasterizer import RasterizedDocument, convert_pdf_to_images, require_rasterizer
from .records import ExtractedLesson, ExtractedQuestion, ExtractionResult
from .validate import validate_record

logger = logging.getLogger(__name__)

# ── Prompts ──────────────────────────────────────────────────────────────

TEXT_SYSTEM_PROMPT = """\
You convert Singapore H2 Mathematics exam papers and notes into JSON.

RULES:
1. A multi-part question is ONE question: Q3 with parts (i), (ii), (iii) is a single entry.
2. Copy question text exactly, including conditions, "Hence" parts and mark allocations like [3].
3. Wrap all mathematics in dollar signs: $\\frac{a}{b}$ inline, $$...$$ for displayed equations.
4. If a question refers to a diagram, set "hasDiagram": true.
5. Explanatory notes, definitions and worked examples go in "lessons", not "questions".
6. confidence is how sure you are the entry was read correctly (0 to 1).

Topics (exact slug): vectors, probability, statistics, combinatorics, calculus, complex-numbers, functions
Lesson contentType: theory, example, worked_solution, summary

Output ONLY this JSON structure:
{
  "questions": [
    {"questionNum": "1",
     "content": "Solve $x^2 + 2x - 3 = 0$.\\n(i) Find the roots. [2]\\n(ii) Hence ... [3]",
     "answer": "x = 1 or x = -3",
     "solution": null,
     "hints": [],
     "marks": 5,
     "hasDiagram": false,
     "topic": "functions",
     "difficulty": 2,
     "confidence": 0.9}
  ],
  "lessons": [
    {"title": "Integration by parts",
     "content": "$\\int u\\,dv = uv - \\int v\\,du$ ...",
     "contentType": "theory",
     "topic": "calculus",
     "order": 1,
     "confidence": 0.8}
  ]
}"""

VISION_PROMPT = """\
You are reading ONE page of a Singapore H2 Mathematics exam paper.

RULES:
1. Keep every part of a question together: Q5(i), Q5(ii), Q5(iii) are ONE question.
2. If a question continues from the previous page, still report it with its own number.
3. Include all mathematics, written in LaTeX: \\frac{a}{b}, \\int, \\sum, \\vec{a}.
4. Describe any diagram in detail (axes, curves, labelled points, shapes).

For each question give:
- questionNum: main number only, e.g. "Q5" (not "Q5(i)")
- content: full text with parts on separate lines "(i) ...", "(ii) ..."
- diagram: description of the diagram, or null
- topic: vectors, probability, statistics, combinatorics, calculus, complex-numbers or functions
- difficulty: 1 (basic) to 5 (olympiad)
- marks: total marks if shown, e.g. [10]
- confidence: 0 to 1

Respond with ONLY valid JSON:
{"questions": [{"questionNum": "Q1", "content": "...", "diagram": null,
                "topic": "calculus", "difficulty": 3, "marks": 10, "confidence": 0.9}],
 "pageInfo": "one line describing the page"}

A page with no questions (cover, instructions, blank) returns:
{"questions": [], "pageInfo": "..."}"""


# ── Helpers ─────────────────────────────────────────────────────────────

class _TempIds:
    """Job-unique temporary ids: q-<job>-<n> / l-<job>-<n>."""

    def __init__(self):
        self.job = str(uuid.uuid4())[:8]
        self._n = 0

    def next(self, kind: str) -> str:
        self._n += 1
        return f"{kind[0]}-{self.job}-{self._n}"


def _validate_payload(
    payload: ModelPayload, ids: _TempIds
) -> tuple[list[ExtractedQuestion], list[ExtractedLesson]]:
    questions, lessons = [], []
    for raw in payload.questions + payload.lessons:
        record = validate_record(raw, ids.next(raw.kind))
        if isinstance(record, ExtractedLesson):
            lessons.append(record)
        else:
            questions.append(record)
    return questions, lessons


def _require_service(client: OllamaClient):
    if not client.is_available():
        raise ServiceUnavailableError(
            f"Ollama is not running at {client.base_url}. "
            "Start it with: ollama serve"
        )


# ── Text mode ───────────────────────────────────────────────────────────

def run_text_extraction(
    pdf_bytes: bytes,
    job_metadata: Any = None,
    *,
    settings: Settings | None = None,
    client: OllamaClient | None = None,
) -> ExtractionResult:
    """Extract questions and lessons from the PDF's text layer."""
    settings = settings or Settings.from_env()
    client = client or OllamaClient.from_settings(settings)

    check_pdf_limits(pdf_bytes, settings)
    _require_service(client)
    doc = extract_pdf_text(pdf_bytes)
    check_page_count(doc.page_count, settings)
    if not doc.text:
        raise PreconditionError(
            "PDF has no extractable text (probably a scan). Use vision mode instead."
        )

    chunks = split_into_chunks(doc.text, settings.chunk_chars)
    logger.info("Text extraction: %d pages, %d chars, %d chunks",
                doc.page_count, len(doc.text), len(chunks))

    ids = _TempIds()
    questions: list[ExtractedQuestion] = []
    lessons: list[ExtractedLesson] = []
    failed = 0

    for chunk in chunks:
        context = f"\n\n[Section {chunk.ordinal} of {len(chunks)}]" if len(chunks) > 1 else ""
        messages = [
            {"role": "system", "content": TEXT_SYSTEM_PROMPT},
            {"role": "user", "content": (
                "Extract all questions and lesson content from this H2 Math document. "
                f"Keep multi-part questions together as single questions.{context}"
                f"\n\n---\n\n{chunk.text}"
            )},
        ]
        try:
            response = client.chat(
                messages,
                temperature=settings.text_temperature,
                max_tokens=settings.text_max_tokens,
                mode=TEXT_MODE,
                deadline=Deadline.after_ms(settings.text_timeout_ms),
            )
        except (InferenceError, requests.RequestException) as e:
            failed += 1
            logger.warning("Chunk %d/%d failed: %s", chunk.ordinal, len(chunks), e)
            continue

        payload = parse_model_response(response)
        if not payload.ok:
            failed += 1
            logger.warning("Chunk %d/%d: unusable response (%s)",
                           chunk.ordinal, len(chunks), payload.error)
            continue

        qs, ls = _validate_payload(payload, ids)
        questions.extend(qs)
        lessons.extend(ls)
        logger.info("Chunk %d/%d: %d questions, %d lessons",
                    chunk.ordinal, len(chunks), len(qs), len(ls))

    unique_questions = dedupe_questions(questions)
    unique_lessons = dedupe_lessons(lessons, settings.lesson_key_chars)
    logger.info(
        "Text extraction done: %d questions (%d duplicates), %d lessons (%d duplicates), "
        "%d/%d chunks failed",
        len(unique_questions), len(questions) - len(unique_questions),
        len(unique_lessons), len(lessons) - len(unique_lessons),
        failed, len(chunks),
    )
    return ExtractionResult(
        questions=tuple(unique_questions),
        lessons=tuple(unique_lessons),
        job_metadata=job_metadata,
    )


# ── Vision mode ─────────────────────────────────────────────────────────

def run_vision_extraction(
    pdf_bytes: bytes,
    job_metadata: Any = None,
    *,
    settings: Settings | None = None,
    client: OllamaClient | None = None,
    rasterize: Callable[..., RasterizedDocument] | None = None,
) -> ExtractionResult:
    """Extract questions from rasterized pages with the vision model."""
    settings = settings or Settings.from_env()
    client = client or OllamaClient.from_settings(settings)
    rasterize = rasterize or convert_pdf_to_images

    check_pdf_limits(pdf_bytes, settings)
    require_rasterizer()
    _require_service(client)
    if not client.has_vision_capability():
        raise ServiceUnavailableError(
            f"No vision model available. Install one with: ollama pull {client.vision_model}"
        )
    check_page_count(count_pages(pdf_bytes), settings)

    raster = rasterize(
        pdf_bytes,
        dpi=settings.raster_dpi,
        fmt=settings.raster_format,
        max_pages=settings.max_pages,
    )

    ids = _TempIds()
    merger = PageMerger()
    lessons: list[ExtractedLesson] = []
    failed = 0
    merged = 0

    try:
        for page in raster.pages:
            try:
                response = client.analyze_image(
                    page.image_b64,
                    VISION_PROMPT,
                    temperature=settings.vision_temperature,
                    max_tokens=settings.vision_max_tokens,
                    deadline=Deadline.after_ms(settings.vision_timeout_ms),
                )
            except (InferenceError, requests.RequestException) as e:
                failed += 1
                logger.warning("Page %d/%d failed: %s", page.page_number, raster.total_pages, e)
                continue

            payload = parse_model_response(response)
            if not payload.ok:
                failed += 1
                logger.warning("Page %d/%d: unusable response (%s)",
                               page.page_number, raster.total_pages, payload.error)
                continue

            qs, ls = _validate_payload(payload, ids)
            merged += merger.add_page(qs)
            lessons.extend(ls)
            logger.info("Page %d/%d: %d questions%s", page.page_number, raster.total_pages,
                        len(qs), f" ({payload.page_info})" if payload.page_info else "")
    finally:
        raster.release()

    questions = merger.results()
    unique_lessons = dedupe_lessons(lessons, settings.lesson_key_chars)
    logger.info("Vision extraction done: %d questions (%d page continuations merged), "
                "%d/%d pages failed", len(questions), merged, failed, raster.total_pages)
    return ExtractionResult(
        questions=tuple(questions),
        lessons=tuple(unique_lessons),
        job_metadata=job_metadata,
    )
