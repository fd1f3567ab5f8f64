"""Record types for the exam-paper import pipeline.

Everything a job touches is one of these:
  - RawDocument: the uploaded PDF plus its extracted text (read-only)
  - Chunk / PageImage: one unit of inference work (text or vision mode)
  - RawRecord: an untyped item recovered from a model response
  - ExtractedQuestion / ExtractedLesson: validated, strictly-typed records
  - ExtractionResult: the aggregate a job returns
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ── Fixed vocabularies ───────────────────────────────────────────────────

TOPICS = (
    "vectors",
    "probability",
    "statistics",
    "combinatorics",
    "calculus",
    "complex-numbers",
    "functions",
)
DEFAULT_TOPIC = "calculus"

CONTENT_TYPES = ("theory", "example", "worked_solution", "summary")
DEFAULT_CONTENT_TYPE = "theory"

EXAM_TYPES = ("midyear", "promo", "prelim", "topical")

REVIEW_THRESHOLD = 0.7


# ── Inputs and units ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class RawDocument:
    """An uploaded PDF and the text layer extracted from it."""
    data: bytes
    page_count: int
    text: str
    pages: tuple[str, ...] = ()
    title: str | None = None
    author: str | None = None


@dataclass(frozen=True)
class Chunk:
    """A bounded slice of normalized text, sized for one inference call."""
    ordinal: int
    text: str


@dataclass(frozen=True)
class PageImage:
    """One rasterized page: base64 image plus its file inside the job workspace."""
    page_number: int
    image_b64: str
    path: str


@dataclass(frozen=True)
class RawRecord:
    """An untyped payload item, tagged with what the model said it was.

    kind is "question" or "lesson". Only validate.validate_record() may turn
    one of these into a typed record.
    """
    kind: str
    fields: dict[str, Any] = field(default_factory=dict)


# ── Validated records ────────────────────────────────────────────────────

@dataclass(frozen=True)
class ExtractedQuestion:
    temp_id: str
    content: str
    topic: str
    difficulty: int
    confidence: float
    solution: str | None = None
    answer: str | None = None
    hints: tuple[str, ...] | None = None
    question_num: str | None = None
    diagram_description: str | None = None
    diagram_image: str | None = None
    marks: int | None = None

    @property
    def needs_review(self) -> bool:
        return self.confidence < REVIEW_THRESHOLD

    def to_dict(self) -> dict:
        d = {
            "tempId": self.temp_id,
            "content": self.content,
            "topic": self.topic,
            "difficulty": self.difficulty,
            "confidence": self.confidence,
            "needsReview": self.needs_review,
        }
        optional = {
            "solution": self.solution,
            "answer": self.answer,
            "hints": list(self.hints) if self.hints is not None else None,
            "questionNum": self.question_num,
            "diagramDescription": self.diagram_description,
            "diagramImage": self.diagram_image,
            "marks": self.marks,
        }
        d.update({k: v for k, v in optional.items() if v is not None})
        return d


@dataclass(frozen=True)
class ExtractedLesson:
    temp_id: str
    title: str
    content: str
    content_type: str
    topic: str
    order: int
    confidence: float

    def to_dict(self) -> dict:
        return {
            "tempId": self.temp_id,
            "title": self.title,
            "content": self.content,
            "contentType": self.content_type,
            "topic": self.topic,
            "order": self.order,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ExtractionResult:
    """The only thing a job returns. job_metadata is passed through untouched."""
    questions: tuple[ExtractedQuestion, ...]
    lessons: tuple[ExtractedLesson, ...]
    job_metadata: Any = None

    def to_dict(self) -> dict:
        return {
            "questions": [q.to_dict() for q in self.questions],
            "lessons": [l.to_dict() for l in self.lessons],
            "metadata": self.job_metadata,
        }
