"""
NoteFlow Backend — Upload Service (Business Logic Orchestrator)
=================================================================

What:  Coordinates the validate → store → compress → finalize workflow for
       uploaded notes.
Who:   Called by the POST /api/uploads route handler.

Orchestration Flow:
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌──────────────┐
    │  Upload  │───▶│  Validate   │───▶│  Compress    │───▶│  Replace     │
    │  (Route) │    │  & Store    │    │  (PDF only)  │    │  stored file │
    └──────────┘    │  (FileServ) │    │  (Ghostscript)│   └──────────────┘
                    └─────────────┘    └──────────────┘

Oversize policy (PDF_OVERSIZE_POLICY):
    Compressor raised (Ghostscript missing or failing):
        store_original → keep the upload as-is, log a warning
        reject         → delete the upload, re-raise (503 with remediation)
    Compressor returned a result still above budget:
        store_original → keep whichever of original/compressed is smaller
        reject         → delete everything, ValidationError (400)

    Any other failure deletes the stored upload and propagates.
"""

import logging
from pathlib import Path
from typing import Optional

from noteflow.config import settings
from noteflow.exceptions import CompressionError, FileStorageError, NoteFlowError, ValidationError
from noteflow.schemas.compression import CompressionResult
from noteflow.schemas.upload import UploadResponse
from noteflow.services.file_service import FileService, file_service, is_pdf
from noteflow.services.pdf_compress import PDFCompressor, pdf_compressor

logger = logging.getLogger(__name__)

REJECT = "reject"
STORE_ORIGINAL = "store_original"


class UploadService:
    """
    Business logic layer for note uploads.

    Holds no per-request state; the collaborators are injected so tests can
    swap in a compressor with a fake runner or a temp storage root.
    """

    def __init__(
        self,
        files: Optional[FileService] = None,
        compressor: Optional[PDFCompressor] = None,
        oversize_policy: Optional[str] = None,
    ):
        self.files = files or file_service
        self.compressor = compressor or pdf_compressor
        self.oversize_policy = oversize_policy or settings.pdf_oversize_policy

    @property
    def max_pdf_bytes(self) -> int:
        return self.compressor.config.max_bytes

    async def handle_upload(
        self,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> UploadResponse:
        """
        Complete workflow: validate → store → (PDF) compress → respond.

        Args:
            filename: Original filename from the upload
            content: Raw file bytes
            content_length: Content-Length header value (may be None)

        Returns:
            UploadResponse describing the stored file.

        Raises:
            ValidationError: Invalid file, or oversize PDF with the reject policy
            CompressionError: Ghostscript unusable with the reject policy
            FileStorageError: Writing or replacing the stored file failed
        """
        absolute_path: Optional[str] = None
        compressed_path: Optional[str] = None

        try:
            absolute_path, relative_path, mime_type = await self.files.validate_and_store(
                filename=filename,
                content=content,
                content_length=content_length,
            )

            stored_size = len(content)
            compressed = False

            if is_pdf(Path(relative_path).suffix):
                result = await self._compress(absolute_path)
                if result is not None and result.compressed:
                    compressed_path = result.path
                    stored_size, compressed = await self._finalize(absolute_path, result, stored_size)
                    compressed_path = None

            return UploadResponse(
                filename=filename,
                file_url=f"/api/files/{relative_path}",
                mime_type=mime_type,
                size=stored_size,
                original_size=len(content),
                compressed=compressed,
            )

        except Exception as e:
            await self._discard(absolute_path, compressed_path)
            if isinstance(e, NoteFlowError):
                raise
            logger.error("Unexpected error in handle_upload: %s", str(e), exc_info=True)
            raise FileStorageError(
                message="An error occurred while saving your file. Please try again.",
                context={"original_error": type(e).__name__},
            ) from e
        except BaseException:
            # Client disconnect or shutdown cancels the task mid-compression
            logger.warning("Upload of %s cancelled, discarding stored file", filename)
            await self._discard(absolute_path, compressed_path)
            raise

    async def _discard(self, absolute_path: Optional[str], compressed_path: Optional[str]) -> None:
        if compressed_path:
            await self.files.cleanup_file(compressed_path)
        if absolute_path:
            await self.files.cleanup_file(absolute_path)

    async def _compress(self, absolute_path: str) -> Optional[CompressionResult]:
        """
        Run the compressor and apply the policy for tool failures.

        Returns None when the original should be kept untouched.
        """
        try:
            return await self.compressor.compress(absolute_path, max_bytes=self.max_pdf_bytes)
        except CompressionError as e:
            if self.oversize_policy == REJECT:
                raise
            logger.warning(
                "PDF compression unavailable, storing original %s: %s",
                Path(absolute_path).name,
                e.message,
            )
            return None

    async def _finalize(self, absolute_path: str, result: CompressionResult, original_size: int):
        """
        Decide what ends up in storage once the compressor produced a file.

        Returns: Tuple of (stored_size, compressed).
        """
        if result.size > self.max_pdf_bytes:
            budget_mb = self.max_pdf_bytes / (1024 * 1024)
            if self.oversize_policy == REJECT:
                raise ValidationError(
                    message=f"PDF could not be compressed below {budget_mb:.0f}MB.",
                    field="file",
                    context={"compressed_size": result.size, "max_bytes": self.max_pdf_bytes},
                )
            logger.warning(
                "PDF %s still above %.0fMB after compression (%d bytes)",
                Path(absolute_path).name,
                budget_mb,
                result.size,
            )
            if result.size >= original_size:
                await self.files.cleanup_file(result.path)
                return original_size, False

        await self.files.replace_file(result.path, absolute_path)
        logger.info(
            "Stored compressed PDF %s: %d → %d bytes",
            Path(absolute_path).name,
            original_size,
            result.size,
        )
        return result.size, True


# ── Singleton Instance ────────────────────────────────────────────────────
upload_service = UploadService()
