"""CLI for exam-paper extraction.

Usage:
    # Text mode (default): PDF text layer -> local text model
    python -m paper_import paper.pdf --school RI --year 2024 --exam-type prelim

    # Vision mode: page images -> local vision model (scanned papers)
    python -m paper_import paper.pdf --mode vision --out result.json

    python -m paper_import --check       # Probe Ollama, vision model, pdftoppm
    python -m paper_import --serve       # Start the import API
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import Settings
from .errors import ExtractionError, PreconditionError
from .extract import run_text_extraction, run_vision_extraction
from .models import OllamaClient
from .rasterizer import is_rasterizer_available
from .records import EXAM_TYPES


def _check(settings: Settings) -> int:
    client = OllamaClient.from_settings(settings)
    checks = [
        (f"Ollama at {client.base_url}", client.is_available(), "ollama serve"),
        (f"Vision model ({client.vision_model})", client.has_vision_capability(),
         f"ollama pull {client.vision_model}"),
        ("pdftoppm", is_rasterizer_available(), "install poppler / poppler-utils"),
    ]
    for label, ok, fix in checks:
        print(f"  {'OK ' if ok else 'MISSING'}  {label}" + ("" if ok else f"  -> {fix}"))
    return 0 if all(ok for _, ok, _ in checks) else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Extract questions and lessons from exam-paper PDFs")
    parser.add_argument("pdf", nargs="?", type=Path, help="PDF to extract")
    parser.add_argument("--mode", choices=["text", "vision"], default="text")
    parser.add_argument("--school", default="")
    parser.add_argument("--year", type=int)
    parser.add_argument("--exam-type", choices=EXAM_TYPES)
    parser.add_argument("--paper", type=int, help="Paper number")
    parser.add_argument("--out", type=Path, help="Write result JSON here (default: stdout)")
    parser.add_argument("--check", action="store_true", help="Check collaborators and exit")
    parser.add_argument("--serve", action="store_true", help="Start the import API server")
    parser.add_argument("--port", type=int, help="API port (with --serve)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    settings = Settings.from_env()

    if args.serve:
        from .server import serve
        serve(args.port)
        return 0
    if args.check:
        return _check(settings)
    if args.pdf is None:
        parser.error("a PDF path is required (or use --check / --serve)")
    if not args.pdf.exists():
        parser.error(f"PDF not found: {args.pdf}")

    metadata = {"filename": args.pdf.name, "school": args.school, "year": args.year,
                "examType": args.exam_type}
    if args.paper is not None:
        metadata["paperNumber"] = args.paper

    run = run_vision_extraction if args.mode == "vision" else run_text_extraction
    try:
        result = run(args.pdf.read_bytes(), metadata, settings=settings)
    except PreconditionError as e:
        print(f"Cannot start extraction: {e}", file=sys.stderr)
        return 2
    except ExtractionError as e:
        print(f"Extraction failed: {e}", file=sys.stderr)
        return 1

    output = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)
    if args.out:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(output)
    else:
        print(output)

    review = sum(1 for q in result.questions if q.needs_review)
    print(f"\n  {args.pdf.name}: {len(result.questions)} questions "
          f"({review} need review), {len(result.lessons)} lessons", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
