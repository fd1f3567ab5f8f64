"""Environment-driven settings for the import pipeline.

Values come from the process environment, after loading a .env file from the
project root. Malformed numbers fall back to their defaults.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).parent
_PROJECT_ROOT = PACKAGE_DIR.parent
load_dotenv(_PROJECT_ROOT / ".env")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (not an integer), using %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (not a number), using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    ollama_url: str = "http://localhost:11434"
    text_model: str = "qwen2.5:32b"
    vision_model: str = "llava:13b"

    max_file_mb: float = 10
    max_pages: int = 50
    chunk_chars: int = 10_000
    lesson_key_chars: int = 200

    text_timeout_ms: int = 600_000
    vision_timeout_ms: int = 300_000
    text_temperature: float = 0.3
    vision_temperature: float = 0.2
    text_max_tokens: int = 8192
    vision_max_tokens: int = 4096

    raster_dpi: int = 150
    raster_format: str = "png"

    output_dir: Path = PACKAGE_DIR / "output" / "imports"

    @property
    def max_file_bytes(self) -> int:
        return int(self.max_file_mb * 1024 * 1024)

    @classmethod
    def from_env(cls) -> "Settings":
        d = cls()
        return cls(
            ollama_url=os.environ.get("OLLAMA_BASE_URL", d.ollama_url).rstrip("/"),
            text_model=os.environ.get("OLLAMA_MODEL", d.text_model),
            vision_model=os.environ.get("OLLAMA_VISION_MODEL", d.vision_model),
            max_file_mb=_env_float("IMPORT_MAX_FILE_MB", d.max_file_mb),
            max_pages=_env_int("IMPORT_MAX_PAGES", d.max_pages),
            chunk_chars=_env_int("IMPORT_CHUNK_CHARS", d.chunk_chars),
            lesson_key_chars=_env_int("IMPORT_LESSON_KEY_CHARS", d.lesson_key_chars),
            text_timeout_ms=_env_int("IMPORT_TEXT_TIMEOUT_MS", d.text_timeout_ms),
            vision_timeout_ms=_env_int("IMPORT_VISION_TIMEOUT_MS", d.vision_timeout_ms),
            raster_dpi=_env_int("IMPORT_RASTER_DPI", d.raster_dpi),
            output_dir=Path(os.environ.get("IMPORT_OUTPUT_DIR", str(d.output_dir))),
        )
