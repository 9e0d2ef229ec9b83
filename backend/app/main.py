# backend/app/main.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import settings
from app.api.tree_api import router as tree_router
from app.services.tree_service import TreeService

logger = logging.getLogger(__name__)


def create_app(storage_folder: Optional[Path] = None) -> FastAPI:
    storage = Path(storage_folder) if storage_folder is not None else settings.STORAGE_FOLDER

    app = FastAPI(title="Tree Explorer · Node Tree Backend")

    # -----------------------------
    # CORS
    # -----------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------
    # Store + routes
    # -----------------------------
    app.state.tree_service = TreeService.for_folder(storage)
    app.include_router(tree_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "storage": str(storage)}

    logger.info("Tree backend ready, storage folder %s", storage)
    return app
