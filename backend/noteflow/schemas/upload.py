"""
NoteFlow Backend — API Request/Response Schemas
=================================================

What:  Pydantic models defining the HTTP contract between frontend and backend.
How:   FastAPI uses these models to serialize responses and generate the
       OpenAPI documentation.
Who:   Used by route handlers as response models and by UploadService as
       its return type.
"""

from typing import Optional

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """
    What:  Result of a successful note upload.
    Who:   Returned by POST /api/uploads with HTTP 201 Created.

    size vs original_size:
        For PDFs that went through compression, `size` is what is stored and
        `original_size` is what the client sent. They are equal otherwise.
    """
    message: str = Field(default="File uploaded successfully", description="Human-readable success message")
    filename: str = Field(description="Original filename as sent by the client")
    file_url: str = Field(description="URL path to download the stored file")
    mime_type: str = Field(description="MIME type derived from the file extension")
    size: int = Field(ge=0, description="Stored size in bytes")
    original_size: int = Field(ge=0, description="Uploaded size in bytes")
    compressed: bool = Field(default=False, description="Whether the stored file is a compressed copy")


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Example:
        {
            "error": "compression_unavailable",
            "message": "Unable to compress PDF automatically ...",
            "details": {"remediation": "Install Ghostscript ..."},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """
    What:  Health check response with Ghostscript availability.
    Who:   Returned by GET /health.

    Uploads keep working without Ghostscript (depending on the oversize
    policy), so a missing tool reports "degraded" rather than "unhealthy".
    """
    status: str = Field(description="Overall service status: healthy, degraded")
    version: str = Field(description="Application version")
    ghostscript: str = Field(description="Ghostscript status: available, unavailable")
    ghostscript_version: Optional[str] = Field(default=None, description="Reported Ghostscript version")
    uptime_seconds: float = Field(description="Seconds since service started")
