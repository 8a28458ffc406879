"""
NoteFlow Backend — Health Check Route
=======================================

What:  Health check endpoint for monitoring and container probes.
How:   Probes Ghostscript with `--version` and reports aggregate status.

Status levels:
    - healthy:   Ghostscript answers, PDFs can be compressed
    - degraded:  Ghostscript missing; uploads still work, oversize PDFs are
                 stored as-is or rejected depending on PDF_OVERSIZE_POLICY
"""

import logging
import time

from fastapi import APIRouter

from noteflow import __version__
from noteflow.schemas.upload import HealthResponse
from noteflow.services.pdf_compress import pdf_compressor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Module-level: set once when the module loads
_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Returns the health status of the backend and whether Ghostscript is usable.",
)
async def health_check() -> HealthResponse:
    status = await pdf_compressor.availability()

    overall = "healthy"
    if not status.available:
        overall = "degraded"
        logger.warning("Health check: Ghostscript unavailable")

    return HealthResponse(
        status=overall,
        version=__version__,
        ghostscript="available" if status.available else "unavailable",
        ghostscript_version=status.version,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
