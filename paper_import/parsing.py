"""Recover the JSON payload from a model reply.

Handles:
  - Pure JSON
  - JSON in ```json ... ``` (or bare ```) code blocks
  - JSON surrounded by prose

parse_model_response() never raises. When nothing usable is found it returns
an empty payload and says why in `error`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from .records import RawRecord

logger = logging.getLogger(__name__)

_FENCED = re.compile(r"```(?:[a-zA-Z0-9_-]+)?\s*\n?(.*?)```", re.DOTALL)


@dataclass
class ModelPayload:
    questions: list[RawRecord] = field(default_factory=list)
    lessons: list[RawRecord] = field(default_factory=list)
    page_info: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _json_candidate(text: str) -> str:
    m = _FENCED.search(text)
    if m:
        text = m.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        text = text[start : end + 1]
    return text.strip()


def _records(kind: str, items) -> list[RawRecord]:
    if not isinstance(items, list):
        return []
    out = []
    for item in items:
        if isinstance(item, dict):
            out.append(RawRecord(kind=kind, fields=item))
        elif isinstance(item, str) and item.strip():
            out.append(RawRecord(kind=kind, fields={"content": item}))
        else:
            logger.debug("Dropping non-object %s item: %r", kind, item)
    return out


def parse_model_response(text: str | None) -> ModelPayload:
    """Turn free-form model text into question and lesson raw records."""
    if not text or not text.strip():
        return ModelPayload(error="empty response")

    candidate = _json_candidate(text)
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError) as e:
        # Runaway "[[[[..." replies cut off at max_tokens nest past the recursion limit
        logger.warning("Failed to parse model response: %s", e)
        logger.warning("Response was: %s", text[:500])
        return ModelPayload(error=f"invalid JSON: {e}")

    if not isinstance(parsed, dict):
        logger.warning("Model response is JSON but not an object: %s", type(parsed).__name__)
        return ModelPayload(error=f"expected a JSON object, got {type(parsed).__name__}")

    page_info = parsed.get("pageInfo")
    return ModelPayload(
        questions=_records("question", parsed.get("questions")),
        lessons=_records("lesson", parsed.get("lessons")),
        page_info=page_info if isinstance(page_info, str) else "",
    )
