"""Coerce untyped model output into ExtractedQuestion / ExtractedLesson.

Nothing here raises: every field has a default, and doubt about the model's
output is expressed through `confidence` (and so `needs_review`) rather than
by dropping records.

Note the asymmetry: difficulty is clamped to 1..5, confidence is not clamped
to 0..1. needs_review is computed from the unclamped confidence.
"""

from __future__ import annotations

import math
import re
from typing import Any

from .records import (
    CONTENT_TYPES,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_TOPIC,
    TOPICS,
    ExtractedLesson,
    ExtractedQuestion,
    RawRecord,
)

DEFAULT_DIFFICULTY = 2
DEFAULT_CONFIDENCE = 0.5
DIAGRAM_PLACEHOLDER = "This question includes a diagram"

# Substring -> topic; checked in order after an exact match fails
TOPIC_SYNONYMS = {
    "integration": "calculus",
    "differentiation": "calculus",
    "differential": "calculus",
    "derivative": "calculus",
    "integral": "calculus",
    "series": "calculus",
    "sequence": "calculus",
    "maclaurin": "calculus",
    "complex": "complex-numbers",
    "argand": "complex-numbers",
    "vector": "vectors",
    "3d": "vectors",
    "planes": "vectors",
    "lines": "vectors",
    "permutation": "combinatorics",
    "combination": "combinatorics",
    "pnc": "combinatorics",
    "counting": "combinatorics",
    "venn": "probability",
    "conditional": "probability",
    "distribution": "statistics",
    "binomial": "statistics",
    "hypothesis": "statistics",
    "regression": "statistics",
    "correlation": "statistics",
    "sampling": "statistics",
    "graphs": "functions",
    "transformation": "functions",
    "inequalit": "functions",
}

QUESTION_NUM_KEYS = ("questionNum", "questionNumber", "question_number", "number", "num", "qNum", "q")

_SUBPART = re.compile(r"\(\s*(?:[ivxlcdm]+|[a-z])\s*\)", re.IGNORECASE)


# ── Scalar coercion ──────────────────────────────────────────────────────

def _first(fields: dict, *keys: str) -> Any:
    for key in keys:
        value = fields.get(key)
        if value is not None and value != "":
            return value
    return None


def coerce_text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple)):
        return "\n".join(coerce_text(v) for v in value if v is not None)
    return str(value)


def _optional_text(value: Any) -> str | None:
    text = coerce_text(value)
    return text or None


def coerce_number(value: Any) -> float | None:
    """A finite float, or None for anything non-numeric (NaN and infinities included)."""
    if isinstance(value, bool) or value is None:
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def coerce_difficulty(value: Any) -> int:
    number = coerce_number(value)
    if number is None:
        return DEFAULT_DIFFICULTY
    return int(round(min(5.0, max(1.0, number))))


def coerce_confidence(value: Any) -> float:
    number = coerce_number(value)
    return DEFAULT_CONFIDENCE if number is None else number


def coerce_int(value: Any, default: int | None = None) -> int | None:
    number = coerce_number(value)
    if number is None:
        return default
    return int(number)


def coerce_topic(value: Any) -> str:
    """Map a free-form topic label onto the fixed topic set."""
    if not isinstance(value, str):
        return DEFAULT_TOPIC
    normalized = re.sub(r"[\s_]+", "-", value.strip().lower())
    if normalized in TOPICS:
        return normalized
    for key, topic in TOPIC_SYNONYMS.items():
        if key in normalized:
            return topic
    return DEFAULT_TOPIC


def coerce_content_type(value: Any) -> str:
    if not isinstance(value, str):
        return DEFAULT_CONTENT_TYPE
    normalized = re.sub(r"[\s-]+", "_", value.strip().lower())
    return normalized if normalized in CONTENT_TYPES else DEFAULT_CONTENT_TYPE


def coerce_hints(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else None
    if isinstance(value, (list, tuple)):
        return tuple(coerce_text(v) for v in value if v is not None)
    return (coerce_text(value),)


# ── Question numbers ─────────────────────────────────────────────────────

def normalize_question_num(label: Any) -> str | None:
    """Canonical merge key for a question label: "Q5(ii)" -> "Q5".

    Sub-part markers such as (i), (iv), (a) are removed, whitespace and
    trailing punctuation dropped, and the result is upper-cased with a
    leading Q. Idempotent. Returns None when no label is present.
    """
    if label is None or isinstance(label, bool):
        return None
    if isinstance(label, float) and label.is_integer():
        label = int(label)
    text = re.sub(r"\s+", "", str(label))
    while True:
        stripped = _SUBPART.sub("", text)
        if stripped == text:
            break
        text = stripped
    text = text.rstrip(".:").upper()
    if not text:
        return None
    return text if text.startswith("Q") else f"Q{text}"


# ── Records ──────────────────────────────────────────────────────────────

def _question_content(fields: dict) -> str:
    content = fields.get("content")
    if isinstance(content, str) and content.strip():
        return content.strip()
    parts = fields.get("parts")
    if isinstance(parts, list) and parts:
        lines = []
        for part in parts:
            if isinstance(part, dict):
                num = coerce_text(_first(part, "part_number", "partNum", "label"))
                text = coerce_text(_first(part, "text", "content"))
                lines.append(f"{num} {text}" if num else text)
            else:
                lines.append(coerce_text(part))
        return "\n".join(lines).strip()
    if fields.get("text") is not None:
        return coerce_text(fields.get("text"))
    return coerce_text(content)


def _diagram_description(fields: dict) -> str | None:
    description = _first(fields, "diagramDescription", "diagram")
    if isinstance(description, str) and description.strip():
        if description.strip().lower() not in ("null", "none", "n/a"):
            return description.strip()
    flag = _first(fields, "hasDiagram", "has_diagram")
    if flag is True or fields.get("diagram") is True:
        return DIAGRAM_PLACEHOLDER
    return None


def validate_question(fields: dict, temp_id: str) -> ExtractedQuestion:
    return ExtractedQuestion(
        temp_id=temp_id,
        content=_question_content(fields),
        solution=_optional_text(fields.get("solution")),
        answer=_optional_text(fields.get("answer")),
        hints=coerce_hints(fields.get("hints")),
        topic=coerce_topic(_first(fields, "topic", "category")),
        difficulty=coerce_difficulty(fields.get("difficulty")),
        confidence=coerce_confidence(fields.get("confidence")),
        question_num=normalize_question_num(_first(fields, *QUESTION_NUM_KEYS)),
        diagram_description=_diagram_description(fields),
        diagram_image=_optional_text(fields.get("diagramImage")),
        marks=coerce_int(_first(fields, "marks", "total_marks")),
    )


def validate_lesson(fields: dict, temp_id: str) -> ExtractedLesson:
    return ExtractedLesson(
        temp_id=temp_id,
        title=coerce_text(fields.get("title")),
        content=coerce_text(fields.get("content")),
        content_type=coerce_content_type(_first(fields, "contentType", "content_type", "type")),
        topic=coerce_topic(_first(fields, "topic", "category")),
        order=coerce_int(fields.get("order"), default=0),
        confidence=coerce_confidence(fields.get("confidence")),
    )


def validate_record(raw: RawRecord, temp_id: str) -> ExtractedQuestion | ExtractedLesson:
    """The single way a RawRecord becomes a typed record."""
    fields = raw.fields if isinstance(raw.fields, dict) else {}
    if raw.kind == "lesson":
        return validate_lesson(fields, temp_id)
    return validate_question(fields, temp_id)
