"""ASGI entry-point for the FastAPI application.

This module
1. instantiates the :class:`fastapi.FastAPI` application;
2. wires the API routers located in ``audiobox.api``;
3. registers global exception handlers and middleware; and
4. performs a few start-up sanity checks (log directory, data locations
   writable, database schema present).
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from audiobox.api import api_router
from audiobox.config import settings
from audiobox.db.database import create_tables
from audiobox.errors import AudioboxError
from audiobox.logging_config import LOG_DIR as APP_LOG_DIR
from audiobox.logging_config import setup_logging
from audiobox.utils.storage import BUCKETS_DIR, DATA_ROOT, ensure_dir_exists


# ---------------------------------------------------------------------------
# Logging must be configured as soon as possible so that any errors during
# import/start-up are captured.
# ---------------------------------------------------------------------------
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    logger.info("Running start-up checks …")
    paths = [APP_LOG_DIR]
    if settings.STORAGE_BACKEND == "local":
        paths += [DATA_ROOT, BUCKETS_DIR]
    for path in paths:
        try:
            ensure_dir_exists(Path(path))
        except OSError as exc:
            logger.critical("Cannot create/access directory %s – %s", path, exc)
        else:
            writable = os.access(str(path), os.W_OK)
            logger.info("Directory %s is %swritable", path, "" if writable else "NOT ")
    logger.info("Start-up checks finished.")
    yield


def create_app() -> FastAPI:
    """Wire and return the FastAPI application instance."""

    app = FastAPI(
        title="Audiobox API",
        version="0.1.0",
        docs_url="/api/docs",
        lifespan=_lifespan,
    )

    # ------------------------------------------------------------------
    # Exception handlers
    # ------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        logger.error("Request validation error: %s", exc.errors())
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(
        _request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        logger.error("HTTP exception %s: %s", exc.status_code, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(AudioboxError)
    async def _app_error_handler(
        _request: Request,
        exc: AudioboxError,
    ) -> JSONResponse:
        logger.error("Application exception (%s): %s", type(exc).__name__, exc.detail)
        content = {"detail": exc.detail}
        orphaned = getattr(exc, "orphaned_path", None)
        if orphaned:
            content["orphaned_path"] = orphaned
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def _generic_error_handler(
        _request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")

    # ------------------------------------------------------------------
    # Ensure DB schema exists (development convenience only).
    # ------------------------------------------------------------------

    try:
        create_tables()
    except Exception as exc:  # pragma: no cover
        logger.exception("Failed to create DB schema: %s", exc)

    @app.get("/api/health")
    async def _health() -> dict[str, str]:
        return {"status": "ok"}

    return app


# Instantiate at import time so `uvicorn audiobox.main:app` works.
app: FastAPI = create_app()
