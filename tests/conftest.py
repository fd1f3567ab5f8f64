import json
import sys
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import fitz
import pytest

# Add the project root to sys.path so paper_import imports without installing
ROOT_PATH = Path(__file__).resolve().parent.parent
if ROOT_PATH.as_posix() not in sys.path:
    sys.path.insert(0, ROOT_PATH.as_posix())

from paper_import import jobs
from paper_import.config import Settings


class FakeClient:
    """Stands in for OllamaClient; replies are consumed in order.

    A reply that is an exception instance is raised instead of returned.
    """

    def __init__(self, replies=(), available=True, vision=True):
        self.replies = list(replies)
        self.available = available
        self.vision = vision
        self.calls = []
        self.base_url = "http://ollama.test"
        self.vision_model = "llava:13b"

    def is_available(self):
        return self.available

    def has_vision_capability(self):
        return self.vision

    def _next(self):
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def chat(self, messages, **options):
        self.calls.append(("chat", messages, options))
        return self._next()

    def analyze_image(self, image_b64, prompt, **options):
        self.calls.append(("image", image_b64, options))
        return self._next()


def reply(questions=(), lessons=(), **extra) -> str:
    """A model reply carrying the given items."""
    return json.dumps({"questions": list(questions), "lessons": list(lessons), **extra})


def build_pdf(pages) -> bytes:
    """A PDF with one page per entry; each entry is a list of text lines."""
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page()
        y = 72
        for line in lines:
            page.insert_text((72, y), line)
            y += 14
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return replace(Settings(), output_dir=tmp_path / "imports")


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def exam_pdf() -> bytes:
    return build_pdf([
        ["1 Solve the inequality x^2 - 4 < 0. [3]"],
        ["2 Find the derivative of sin(2x). [2]"],
    ])


@pytest.fixture
def rasterizer_installed():
    with patch("paper_import.rasterizer.shutil.which", return_value="/usr/bin/pdftoppm"):
        yield


@pytest.fixture(autouse=True)
def clean_jobs(tmp_path: Path):
    jobs.clear_jobs()
    jobs.set_output_dir(tmp_path / "saved")
    yield
    jobs.clear_jobs()
