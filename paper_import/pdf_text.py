"""PDF text layer: extraction, normalization, chunking and input limits.

The text extractor is PyMuPDF; everything after it is pure string work.

Usage:
    from paper_import.pdf_text import extract_pdf_text, split_into_chunks

    doc = extract_pdf_text(pdf_bytes)
    chunks = split_into_chunks(doc.text, max_chars=10_000)
"""

from __future__ import annotations

import re

import fitz  # PyMuPDF

from .config import Settings
from .errors import PreconditionError
from .records import Chunk, RawDocument

PDF_MAGIC = b"%PDF-"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_HORIZONTAL_WS = re.compile(r"[ \t\u00a0]+")
_PARAGRAPH_BREAK = re.compile(r"\n{2,}")


# ── Normalization ────────────────────────────────────────────────────────

def normalize_text(raw: str) -> str:
    """Clean extracted PDF text.

    Collapses horizontal whitespace, squeezes 3+ newlines down to a blank
    line, drops control characters and folds typographic quotes and dashes
    to ASCII.
    """
    if not raw:
        return ""
    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = _HORIZONTAL_WS.sub(" ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[\u201c\u201d\u201e\u201f]", '"', text)
    text = re.sub(r"[\u2018\u2019\u201a\u201b]", "'", text)
    text = re.sub(r"[\u2012-\u2015]", "-", text)
    text = text.replace("\u2026", "...")
    text = re.sub(r"\.{3,}", "...", text)
    return text.strip()


# ── Chunking ─────────────────────────────────────────────────────────────

def split_into_chunks(text: str, max_chars: int) -> list[Chunk]:
    """Greedily pack paragraphs into chunks of at most max_chars.

    A paragraph longer than max_chars is emitted as its own oversized chunk
    instead of being cut. Empty text yields no chunks.
    """
    text = text.strip()
    if not text:
        return []
    if len(text) <= max_chars:
        return [Chunk(ordinal=1, text=text)]

    packed: list[str] = []
    current = ""
    for para in _PARAGRAPH_BREAK.split(text):
        para = para.strip()
        if not para:
            continue
        candidate = f"{current}\n\n{para}" if current else para
        if current and len(candidate) > max_chars:
            packed.append(current)
            current = para
        else:
            current = candidate
    if current:
        packed.append(current)

    return [Chunk(ordinal=i + 1, text=t) for i, t in enumerate(packed)]


# ── Input limits ─────────────────────────────────────────────────────────

def is_valid_pdf(data: bytes) -> bool:
    return data[: len(PDF_MAGIC)] == PDF_MAGIC


def check_pdf_limits(data: bytes, settings: Settings, page_count: int | None = None):
    """Raise PreconditionError if the upload is too large or not a PDF."""
    size_mb = len(data) / (1024 * 1024)
    if len(data) > settings.max_file_bytes:
        raise PreconditionError(
            f"PDF is too large ({size_mb:.1f}MB). Maximum is {settings.max_file_mb:g}MB."
        )
    if not is_valid_pdf(data):
        raise PreconditionError("Invalid PDF file (missing %PDF- header).")
    if page_count is not None:
        check_page_count(page_count, settings)


def check_page_count(page_count: int, settings: Settings):
    if page_count > settings.max_pages:
        raise PreconditionError(
            f"PDF has too many pages ({page_count}). Maximum is {settings.max_pages}."
        )


# ── Extraction ───────────────────────────────────────────────────────────

def _open(data: bytes) -> fitz.Document:
    try:
        return fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise PreconditionError(f"Failed to read PDF: {e}") from e


def count_pages(data: bytes) -> int:
    doc = _open(data)
    try:
        return doc.page_count
    finally:
        doc.close()


def extract_pdf_text(data: bytes) -> RawDocument:
    """Extract the full text, per-page text and metadata of a PDF."""
    doc = _open(data)
    try:
        raw_pages = [page.get_text("text") or "" for page in doc]
        meta = doc.metadata or {}
        page_count = doc.page_count
    except Exception as e:
        raise PreconditionError(f"Failed to extract PDF text: {e}") from e
    finally:
        doc.close()

    return RawDocument(
        data=data,
        page_count=page_count,
        text=normalize_text("\n\n".join(raw_pages)),
        pages=tuple(normalize_text(p) for p in raw_pages),
        title=meta.get("title") or None,
        author=meta.get("author") or None,
    )
