"""
NoteFlow Backend — FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn noteflow.main:app).

Application Layout:
    Middleware (outermost first):  RequestID → Logging → GZip → CORS
    Routes:                        POST /api/uploads, GET /api/files/{path}, GET /health
    Exception handlers:            Validation→400 │ NotFound→404 │ Storage→500 │ Compression→503

Lifecycle:
    Startup:
    1. Initialize logging
    2. Create storage and compression scratch directories
    3. Probe Ghostscript and log the result (never fatal)

    Shutdown:
    1. Log shutdown complete
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from noteflow import __version__
from noteflow.config import settings
from noteflow.exceptions import (
    CompressionError,
    FileStorageError,
    NoteFlowError,
    NotFoundError,
    ValidationError,
)
from noteflow.middleware.logging import RequestLoggingMiddleware
from noteflow.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware, request_id_var
from noteflow.routes import health, uploads
from noteflow.services.pdf_compress import pdf_compressor

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: 2024-01-15T12:00:00 [INFO] noteflow.services.pdf_compress: message
    Called once during app startup, before any other initialization.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries that log every operation
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: logging, directories, Ghostscript diagnostics.

    A missing Ghostscript is only logged: uploads keep working and the
    oversize policy decides what happens to large PDFs.
    """
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("NoteFlow Backend %s starting up...", __version__)

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())

    temp_dir = Path(pdf_compressor.config.temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Compression scratch directory: %s", temp_dir.resolve())

    status = await pdf_compressor.availability()
    if status.available:
        logger.info("Ghostscript found: %s (%s)", status.executable, status.version)
    else:
        logger.warning(
            "Ghostscript not found (tried: %s). PDFs above %d bytes will be %s.",
            ", ".join(pdf_compressor.candidates()),
            pdf_compressor.config.max_bytes,
            "rejected" if settings.pdf_oversize_policy == "reject" else "stored uncompressed",
        )
    logger.info(
        "PDF budget %d bytes, ladder %s, aggressive=%s",
        pdf_compressor.config.max_bytes,
        ",".join(pdf_compressor.config.qualities),
        pdf_compressor.config.aggressive,
    )

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("NoteFlow Backend shutting down...")
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, details=None) -> dict:
    body = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the NoteFlowError hierarchy onto HTTP responses.

        ValidationError     → 400
        NotFoundError       → 404
        FileStorageError    → 500
        CompressionError    → 503 (with a remediation hint)
        NoteFlowError       → 500
        Exception           → 500, traceback logged

    Context dicts are logged server-side; only validation details are
    returned to the client.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", exc.message, exc.context),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content=_error_body("not_found", exc.message))

    @app.exception_handler(CompressionError)
    async def handle_compression_error(request: Request, exc: CompressionError):
        """Ghostscript missing or failing and the upload policy is reject."""
        logger.error(
            "[%s] Compression error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return JSONResponse(
            status_code=503,
            content=_error_body(
                "compression_unavailable",
                exc.message,
                {"remediation": exc.remediation},
            ),
        )

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error(
            "[%s] File storage error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return JSONResponse(status_code=500, content=_error_body("server_error", exc.message))

    @app.exception_handler(NoteFlowError)
    async def handle_noteflow_error(request: Request, exc: NoteFlowError):
        logger.error("[%s] %s: %s", request_id_var.get(""), type(exc).__name__, exc.message)
        return JSONResponse(status_code=500, content=_error_body("server_error", exc.message))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Stack trace is logged server-side only."""
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """Assemble middleware, exception handlers and routes into a FastAPI app."""
    app = FastAPI(
        title="NoteFlow API",
        description=(
            "Note sharing backend. Uploaded PDFs above the configured size budget "
            "are compressed with Ghostscript before they are stored."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition (last added runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Content-Disposition"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(uploads.router)
    app.include_router(health.router)

    return app


app = create_app()
