"""
NoteFlow Backend — Upload & File Routes
=========================================

What:  POST /api/uploads stores a note file (compressing PDFs on the way in);
       GET /api/files/{path} serves stored files back.
Who:   Called by the frontend upload page and by download links.

Request Flow (upload):
    1. Client sends multipart/form-data with a 'file' field
    2. We read the file content into memory (bounded by size validation)
    3. UploadService handles: validate → store → compress → finalize
    4. Return 201 Created with UploadResponse body
"""

import logging

from fastapi import APIRouter, File, UploadFile
from fastapi.responses import FileResponse

from noteflow.schemas.upload import ErrorResponse, UploadResponse
from noteflow.services.file_service import content_type_for, file_service
from noteflow.services.upload_service import upload_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Uploads"])


@router.post(
    "/uploads",
    status_code=201,
    response_model=UploadResponse,
    responses={
        201: {"description": "File stored", "model": UploadResponse},
        400: {"description": "Invalid file type or size", "model": ErrorResponse},
        503: {"description": "PDF compression unavailable", "model": ErrorResponse},
    },
    summary="Upload a note file",
    description=(
        "Upload a note (PDF, Office document, text or image, max 25MB). "
        "PDFs above the configured budget are compressed with Ghostscript before storage."
    ),
)
async def upload_note(
    file: UploadFile = File(..., description="Note file to store"),
) -> UploadResponse:
    """
    Error responses (handled by global exception handlers):
        HTTP 400: Invalid file, or oversize PDF with PDF_OVERSIZE_POLICY=reject
        HTTP 503: Ghostscript unusable with PDF_OVERSIZE_POLICY=reject
        HTTP 500: Storage failure
    """
    content = await file.read()

    logger.info(
        "Received upload: filename=%s, size=%d bytes",
        file.filename or "unknown",
        len(content),
    )

    try:
        return await upload_service.handle_upload(
            filename=file.filename or "upload",
            content=content,
            content_length=file.size,
        )
    finally:
        await file.close()


@router.get(
    "/files/{file_path:path}",
    summary="Download a stored file",
    responses={
        400: {"description": "Invalid file path", "model": ErrorResponse},
        404: {"description": "File not found", "model": ErrorResponse},
    },
)
async def serve_file(file_path: str) -> FileResponse:
    """
    Serve a stored file.

    Security:
        - Path is resolved against STORAGE_ROOT and must stay inside it
        - Compression scratch files are never served
    """
    full_path = file_service.resolve(file_path)

    return FileResponse(
        path=str(full_path),
        media_type=content_type_for(full_path.name),
        filename=full_path.name,
        headers={"Cache-Control": "public, max-age=86400"},
    )
