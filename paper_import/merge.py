"""Record merging for the two extraction paths.

Vision path: a question split across two page analyses (Q5(i) on page 3,
Q5(ii) on page 4) is folded into one record keyed by its normalized
question number. Text path: overlapping chunks can yield the same record
twice; near-duplicates are collapsed, first occurrence wins.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable

from .records import ExtractedLesson, ExtractedQuestion

PARAGRAPH_SEP = "\n\n"
LESSON_KEY_CHARS = 200


# ── Similarity helpers ───────────────────────────────────────────────────

def _normalize(text: str | None) -> str:
    """Normalize text for comparison: lowercase, strip, collapse whitespace."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", str(text).strip().lower())


def question_sort_number(question_num: str | None) -> int:
    """Numeric portion of a question key ("Q12" -> 12); 0 when there is none."""
    if not question_num:
        return 0
    m = re.search(r"\d+", question_num)
    return int(m.group(0)) if m else 0


# ── Page-spanning merge (vision path) ────────────────────────────────────

class PageMerger:
    """Ordered fold of per-page questions into one record per question number.

    Pages must be fed in source order. On a key match the new content is
    appended after a blank line and a missing diagram description is filled
    in; every other field keeps the first occurrence's value.
    """

    def __init__(self):
        self._by_key: dict[str, ExtractedQuestion] = {}
        self._order: list[str] = []

    def __len__(self) -> int:
        return len(self._order)

    def add(self, question: ExtractedQuestion) -> bool:
        """Fold one question in. Returns True if it merged into an earlier one."""
        key = question.question_num or f"#{question.temp_id}"  # unlabeled: never merged
        existing = self._by_key.get(key)
        if existing is None:
            self._by_key[key] = question
            self._order.append(key)
            return False

        content = existing.content
        if question.content:
            content = f"{content}{PARAGRAPH_SEP}{question.content}" if content else question.content
        self._by_key[key] = replace(
            existing,
            content=content,
            diagram_description=existing.diagram_description or question.diagram_description,
        )
        return True

    def add_page(self, questions: Iterable[ExtractedQuestion]) -> int:
        """Fold a page's questions; returns how many merged into earlier records."""
        return sum(1 for q in questions if self.add(q))

    def results(self) -> list[ExtractedQuestion]:
        """Merged records ordered by question number, ties in first-seen order."""
        ordered = [self._by_key[key] for key in self._order]
        return sorted(ordered, key=lambda q: question_sort_number(q.question_num))


def merge_page_questions(pages: Iterable[Iterable[ExtractedQuestion]]) -> list[ExtractedQuestion]:
    merger = PageMerger()
    for page in pages:
        merger.add_page(page)
    return merger.results()


# ── Deduplication (text path) ────────────────────────────────────────────

def question_key(question: ExtractedQuestion) -> str:
    return _normalize(f"{question.content} {question.answer or ''}")


def lesson_key(lesson: ExtractedLesson, key_chars: int = LESSON_KEY_CHARS) -> str:
    return _normalize(lesson.content)[:key_chars]


def dedupe_questions(questions: Iterable[ExtractedQuestion]) -> list[ExtractedQuestion]:
    seen = set()
    unique = []
    for q in questions:
        key = question_key(q)
        if key not in seen:
            seen.add(key)
            unique.append(q)
    return unique


def dedupe_lessons(
    lessons: Iterable[ExtractedLesson],
    key_chars: int = LESSON_KEY_CHARS,
) -> list[ExtractedLesson]:
    """Collapse lessons whose first key_chars normalized characters match.

    The key is deliberately loose: lesson prose often straddles chunk
    boundaries differently on each pass.
    """
    seen = set()
    unique = []
    for lesson in lessons:
        key = lesson_key(lesson, key_chars)
        if key not in seen:
            seen.add(key)
            unique.append(lesson)
    return unique
