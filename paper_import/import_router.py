"""Import APIRouter: upload an exam paper, review the extraction, save it.

Endpoints:
    POST /api/import/upload          - run a text or vision extraction job
    GET  /api/import/status/{id}     - job status and counts
    POST /api/import/status/{id}     - {"action": "get_content"} returns the records for review
    POST /api/import/save            - store reviewed records, complete the job
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Literal, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import jobs
from .config import Settings
from .errors import PreconditionError, RasterizationError, ServiceUnavailableError
from .extract import run_text_extraction, run_vision_extraction
from .pdf_text import check_pdf_limits, count_pages
from .records import EXAM_TYPES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/import", tags=["Import"])

Topic = Literal[
    "vectors", "probability", "statistics", "combinatorics",
    "calculus", "complex-numbers", "functions",
]
ContentType = Literal["theory", "example", "worked_solution", "summary"]


# ── Request models ──────────────────────────────────────────────────────

class ImportMetadata(BaseModel):
    filename: str
    school: str
    year: int
    examType: Literal["midyear", "promo", "prelim", "topical"]
    paperNumber: Optional[int] = None
    totalPages: Optional[int] = None


class ReviewedQuestion(BaseModel):
    tempId: Optional[str] = None
    content: str
    solution: Optional[str] = None
    answer: Optional[str] = None
    hints: Optional[List[str]] = None
    topic: Topic
    difficulty: int = Field(ge=1, le=5)
    confidence: float
    questionNum: Optional[str] = None
    diagramDescription: Optional[str] = None
    diagramImage: Optional[str] = None
    marks: Optional[int] = None
    needsReview: bool = False


class ReviewedLesson(BaseModel):
    tempId: Optional[str] = None
    title: str
    content: str
    contentType: ContentType = "theory"
    topic: Topic
    order: int = 0
    confidence: float = 0.5


class SaveRequest(BaseModel):
    importId: str
    questions: List[ReviewedQuestion] = []
    lessons: List[ReviewedLesson] = []
    metadata: ImportMetadata


class ContentRequest(BaseModel):
    action: str


def _error(status: int, error: str, import_id: str | None = None) -> JSONResponse:
    body = {"success": False, "error": error}
    if import_id:
        body["importId"] = import_id
    return JSONResponse(status_code=status, content=body)


# ── Endpoints ───────────────────────────────────────────────────────────

@router.post("/upload")
def upload(
    file: Optional[UploadFile] = File(None),
    school: Optional[str] = Form(None),
    year: Optional[int] = Form(None),
    examType: Optional[str] = Form(None),
    paperNumber: Optional[int] = Form(None),
    mode: Literal["text", "vision"] = Form("text"),
):
    """Extract questions and lessons from an uploaded exam paper."""
    if file is None:
        return _error(400, "No file provided")
    if not school or not year or not examType:
        return _error(400, "School, year, and exam type are required")
    if examType not in EXAM_TYPES:
        return _error(400, f"Unknown exam type: {examType}. Valid: {', '.join(EXAM_TYPES)}")

    filename = file.filename or "unknown.pdf"
    if Path(filename).suffix.lower() != ".pdf":
        return _error(400, "File must be a PDF")

    data = file.file.read()
    settings = Settings.from_env()
    job = jobs.create_job(filename, f"{school} {year} {examType}", mode=mode)

    try:
        check_pdf_limits(data, settings)
        metadata = {
            "filename": filename,
            "school": school,
            "year": year,
            "examType": examType,
            "totalPages": count_pages(data),
        }
        if paperNumber is not None:
            metadata["paperNumber"] = paperNumber

        run = run_vision_extraction if mode == "vision" else run_text_extraction
        result = run(data, metadata, settings=settings)
    except ServiceUnavailableError as e:
        jobs.mark_failed(job["id"], str(e))
        return _error(503, str(e), job["id"])
    except PreconditionError as e:
        jobs.mark_failed(job["id"], str(e))
        return _error(400, str(e), job["id"])
    except RasterizationError as e:
        logger.exception("Rasterization failed for %s", filename)
        jobs.mark_failed(job["id"], f"AI extraction failed: {e}")
        return _error(500, "Failed to convert PDF pages to images", job["id"])
    except Exception as e:
        logger.exception("Extraction failed for %s", filename)
        jobs.mark_failed(job["id"], f"AI extraction failed: {e}")
        return _error(500, "Failed to extract content from PDF", job["id"])

    if not result.questions and not result.lessons:
        jobs.mark_failed(job["id"], "No questions found in PDF")
        return _error(400, "No questions found in the PDF", job["id"])

    jobs.mark_ready(job["id"], result)
    logger.info("Import %s ready: %d questions, %d lessons",
                job["id"], len(result.questions), len(result.lessons))
    return {
        "success": True,
        "importId": job["id"],
        "status": jobs.READY_FOR_REVIEW,
        "questionsFound": len(result.questions),
        "lessonsFound": len(result.lessons),
    }


@router.get("/status/{import_id}")
def get_status(import_id: str):
    job = jobs.get_job(import_id)
    if job is None:
        raise HTTPException(404, "Import not found")

    response = {"id": job["id"], "status": job["status"]}
    if job["status"] == jobs.PROCESSING:
        response["progress"] = 50
    elif job["status"] == jobs.READY_FOR_REVIEW:
        response["progress"] = 100
    if job["questions_count"] is not None:
        response["questionsFound"] = job["questions_count"]
    if job["lessons_count"] is not None:
        response["lessonsFound"] = job["lessons_count"]
    if job["error_message"]:
        response["errorMessage"] = job["error_message"]
    return response


@router.post("/status/{import_id}")
def get_content(import_id: str, req: ContentRequest):
    if req.action != "get_content":
        raise HTTPException(400, "Invalid action")
    job = jobs.get_job(import_id)
    if job is None:
        raise HTTPException(404, "Import not found")
    if job["status"] != jobs.READY_FOR_REVIEW:
        raise HTTPException(400, "Content not ready for review")
    if not job["result"]:
        raise HTTPException(404, "No extracted data found")

    result = job["result"]
    return {
        "importId": job["id"],
        "questions": result["questions"],
        "lessons": result["lessons"],
        "metadata": result["metadata"],
    }


@router.post("/save")
def save(req: SaveRequest):
    job = jobs.get_job(req.importId)
    if job is None:
        raise HTTPException(404, "Import not found")

    questions = [q.model_dump(exclude_none=True) for q in req.questions]
    lessons = [l.model_dump(exclude_none=True) for l in req.lessons]
    out_path = jobs.save_reviewed(
        req.importId, questions, lessons, req.metadata.model_dump(exclude_none=True),
    )
    logger.info("Saved import %s to %s", req.importId, out_path)
    return {"success": True, "savedQuestions": len(questions), "savedLessons": len(lessons)}
