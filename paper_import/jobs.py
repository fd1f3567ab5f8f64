"""In-memory import job store.

An import moves processing -> ready_for_review -> completed, or ends in
failed. Reviewed records are written as JSON to the output directory when
the import is saved; nothing else is persisted.

Usage:
    from paper_import import jobs

    job = jobs.create_job("prelim_p1.pdf", "RI 2024 prelim")
    jobs.mark_ready(job["id"], result)
    jobs.save_reviewed(job["id"], questions, lessons, metadata)
"""

from __future__ import annotations

import json
import time
import uuid
from pathlib import Path
from typing import Optional

from .config import Settings
from .records import ExtractionResult

PROCESSING = "processing"
READY_FOR_REVIEW = "ready_for_review"
COMPLETED = "completed"
FAILED = "failed"

# Explicit output directory; None reads IMPORT_OUTPUT_DIR at save time
_output_dir: Optional[Path] = None

# Finished (completed or failed) jobs kept in memory, oldest evicted first
MAX_FINISHED_JOBS = 200

_jobs: dict[str, dict] = {}


def set_output_dir(output_dir: Optional[Path]):
    """Configure where saved imports are written."""
    global _output_dir
    _output_dir = Path(output_dir) if output_dir is not None else None


def current_output_dir() -> Path:
    return _output_dir or Settings.from_env().output_dir


def _prune():
    finished = [jid for jid, job in _jobs.items() if job["status"] in (COMPLETED, FAILED)]
    for job_id in finished[: max(0, len(finished) - MAX_FINISHED_JOBS)]:
        del _jobs[job_id]


def _now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S")


def create_job(filename: str, source: str, mode: str = "text") -> dict:
    _prune()
    job_id = str(uuid.uuid4())[:8]
    _jobs[job_id] = {
        "id": job_id,
        "filename": filename,
        "source": source,
        "mode": mode,
        "status": PROCESSING,
        "submitted_at": _now(),
        "questions_count": None,
        "lessons_count": None,
        "error_message": None,
        "result": None,
    }
    return _jobs[job_id]


def get_job(job_id: str) -> Optional[dict]:
    return _jobs.get(job_id)


def clear_jobs():
    _jobs.clear()


def mark_ready(job_id: str, result: ExtractionResult):
    job = _jobs[job_id]
    job.update(
        status=READY_FOR_REVIEW,
        questions_count=len(result.questions),
        lessons_count=len(result.lessons),
        result=result.to_dict(),
        completed_at=None,
    )


def mark_failed(job_id: str, error: str):
    job = _jobs[job_id]
    job.update(status=FAILED, error_message=error, completed_at=_now())


def save_reviewed(job_id: str, questions: list[dict], lessons: list[dict], metadata: dict) -> Path:
    """Write reviewed records to <output_dir>/<job_id>.json and complete the job."""
    job = _jobs[job_id]
    out_dir = current_output_dir()
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / f"{job_id}.json"
    out_path.write_text(json.dumps({
        "importId": job_id,
        "filename": job["filename"],
        "source": job["source"],
        "metadata": metadata,
        "questions": questions,
        "lessons": lessons,
        "savedAt": _now(),
    }, indent=2, ensure_ascii=False))

    job.update(
        status=COMPLETED,
        questions_count=len(questions),
        lessons_count=len(lessons),
        result=None,  # Clear to save space
        completed_at=_now(),
    )
    return out_path
