"""PDF -> page images via poppler's pdftoppm.

The tool is invoked once per job inside a private temporary directory.
On failure the directory is removed before the error propagates; on success
the caller owns it and must call release() (or use the result as a context
manager).

Usage:
    from paper_import.rasterizer import convert_pdf_to_images

    with convert_pdf_to_images(pdf_bytes, dpi=150, max_pages=50) as doc:
        for page in doc.pages:
            ...
"""

from __future__ import annotations

import base64
import io
import logging
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image

from .errors import RasterizationError, ServiceUnavailableError
from .records import PageImage

logger = logging.getLogger(__name__)

RASTER_TOOL = "pdftoppm"
MAX_PIXELS = 30_000_000  # Max pixels per page image before downscaling
TOOL_TIMEOUT_S = 300

_PAGE_FILE = re.compile(r"^page-(\d+)\.(png|jpg|jpeg)$", re.IGNORECASE)


def is_rasterizer_available() -> bool:
    return shutil.which(RASTER_TOOL) is not None


def require_rasterizer() -> str:
    """Return the tool path or raise before any workspace exists."""
    exe = shutil.which(RASTER_TOOL)
    if not exe:
        raise ServiceUnavailableError(
            "Poppler (pdftoppm) is not installed. Install it with "
            "'brew install poppler' or 'apt-get install poppler-utils'."
        )
    return exe


# ── Result ───────────────────────────────────────────────────────────────

@dataclass
class RasterizedDocument:
    pages: list[PageImage]
    total_pages: int
    workspace: Path
    _released: bool = field(default=False, repr=False)

    def release(self):
        """Delete the job workspace. Later calls are no-ops."""
        if self._released:
            return
        self._released = True
        shutil.rmtree(self.workspace, ignore_errors=True)
        logger.debug("Released raster workspace %s", self.workspace)

    def __enter__(self) -> "RasterizedDocument":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


# ── Encoding ─────────────────────────────────────────────────────────────

def _encode_page(path: Path, fmt: str) -> str:
    """Base64-encode a page image, downscaling it if over the pixel limit."""
    raw = path.read_bytes()
    with Image.open(io.BytesIO(raw)) as img:
        px = img.size[0] * img.size[1]
        if px <= MAX_PIXELS:
            return base64.b64encode(raw).decode()
        scale = (MAX_PIXELS / px) ** 0.5
        small = img.resize(
            (int(img.size[0] * scale), int(img.size[1] * scale)),
            Image.LANCZOS,
        )
        buf = io.BytesIO()
        small.save(buf, format="PNG" if fmt == "png" else "JPEG")
        return base64.b64encode(buf.getvalue()).decode()


def _page_files(workspace: Path) -> list[tuple[int, Path]]:
    """Produced page files, sorted by the page index pdftoppm embeds in the name."""
    found = []
    for p in workspace.iterdir():
        m = _PAGE_FILE.match(p.name)
        if m:
            found.append((int(m.group(1)), p))
    return sorted(found, key=lambda item: item[0])


# ── Conversion ───────────────────────────────────────────────────────────

def convert_pdf_to_images(
    pdf_bytes: bytes,
    dpi: int = 150,
    fmt: str = "png",
    max_pages: int = 50,
) -> RasterizedDocument:
    """Rasterize up to max_pages pages of a PDF.

    Raises ServiceUnavailableError if pdftoppm is missing (no workspace is
    created) and RasterizationError if the tool fails (workspace removed).
    """
    exe = require_rasterizer()
    fmt = "jpeg" if fmt in ("jpg", "jpeg") else "png"

    workspace = Path(tempfile.mkdtemp(prefix="pdf-images-"))
    try:
        pdf_path = workspace / "input.pdf"
        pdf_path.write_bytes(pdf_bytes)

        cmd = [
            exe, f"-{fmt}", "-r", str(dpi),
            "-f", "1", "-l", str(max_pages),
            str(pdf_path), str(workspace / "page"),
        ]
        subprocess.run(
            cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
            timeout=TOOL_TIMEOUT_S,
        )

        files = _page_files(workspace)[:max_pages]
        if not files:
            raise RasterizationError("pdftoppm produced no page images")

        pages = [
            PageImage(page_number=num, image_b64=_encode_page(path, fmt), path=str(path))
            for num, path in files
        ]
    except subprocess.CalledProcessError as e:
        shutil.rmtree(workspace, ignore_errors=True)
        stderr = (e.stderr or b"").decode(errors="replace").strip()
        raise RasterizationError(f"PDF to image conversion failed: {stderr or e}") from e
    except subprocess.TimeoutExpired as e:
        shutil.rmtree(workspace, ignore_errors=True)
        raise RasterizationError(f"PDF to image conversion timed out after {e.timeout}s") from e
    except OSError as e:
        shutil.rmtree(workspace, ignore_errors=True)
        raise RasterizationError(f"Could not read rasterized pages: {e}") from e
    except BaseException:
        shutil.rmtree(workspace, ignore_errors=True)
        raise

    logger.info("Rasterized %d pages at %d dpi", len(pages), dpi)
    return RasterizedDocument(pages=pages, total_pages=len(pages), workspace=workspace)
