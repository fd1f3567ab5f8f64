"""Standalone FastAPI server for the import API.

Usage:
    python -m paper_import.server          # port 8110 (IMPORT_PORT)
    python -m paper_import --serve

Or include in another app:
    from paper_import.import_router import router as import_router
    app.include_router(import_router)
"""

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .import_router import router
from .models import OllamaClient
from .rasterizer import is_rasterizer_available

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8110


def create_app() -> FastAPI:
    app = FastAPI(title="Exam Paper Import API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.get("/health")
    def health():
        client = OllamaClient()
        return {
            "status": "ok",
            "service": "paper-import",
            "ollama": client.is_available(),
            "rasterizer": is_rasterizer_available(),
        }

    return app


def serve(port: int | None = None):
    import uvicorn

    port = port or int(os.getenv("IMPORT_PORT", str(DEFAULT_PORT)))
    logger.info("Starting import API on port %d", port)
    uvicorn.run(create_app(), host="0.0.0.0", port=port)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    serve()
