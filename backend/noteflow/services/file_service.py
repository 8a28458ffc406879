"""
NoteFlow Backend — File Storage Service
=========================================

What:  Handles note upload validation, storage, replacement, and cleanup.
Why:   Centralizes all file system operations with security checks.
How:   Validates extension, size and the sniffed MIME type, stores in
       date-organized directories, generates unique filenames.
Who:   Called by UploadService during the upload workflow and by the file
       serving route.

Security Model:
    1. Extension check:   Only note formats are accepted
    2. Size check:        Rejects empty files and files above MAX_UPLOAD_SIZE
    3. MIME type check:   libmagic inspects the content; it must match the extension
                          (a .pdf must really be a PDF before Ghostscript sees it)
    4. UUID filename:     No user input reaches the filesystem path
    5. Path resolution:   Served paths must resolve inside STORAGE_ROOT
"""

import errno
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple

import aiofiles
import aiofiles.os
import magic

from noteflow.config import settings
from noteflow.exceptions import FileStorageError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# ── Allowed File Types ────────────────────────────────────────────────────
# Extension → MIME types libmagic may report for genuine files of that kind.
# Legacy Office files are OLE2 containers and OOXML files are zip archives;
# older libmagic builds report the container type instead of the document type.
_OLE2 = frozenset({"application/CDFV2", "application/x-ole-storage"})
_OOXML = frozenset({"application/zip"})

ALLOWED_MIME_TYPES: Dict[str, FrozenSet[str]] = {
    ".pdf": frozenset({"application/pdf"}),
    ".doc": frozenset({"application/msword"}) | _OLE2,
    ".docx": frozenset({"application/vnd.openxmlformats-officedocument.wordprocessingml.document"}) | _OOXML,
    ".ppt": frozenset({"application/vnd.ms-powerpoint"}) | _OLE2,
    ".pptx": frozenset({"application/vnd.openxmlformats-officedocument.presentationml.presentation"}) | _OOXML,
    ".txt": frozenset({"text/plain"}),
    ".md": frozenset({"text/plain", "text/markdown", "text/x-markdown"}),
    ".png": frozenset({"image/png"}),
    ".jpg": frozenset({"image/jpeg"}),
    ".jpeg": frozenset({"image/jpeg"}),
}

# Content-Type used when serving a stored file back
CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}

# Scratch space inside the storage root (compression temp files live here)
TEMP_DIR_NAME = ".tmp"

COPY_CHUNK_SIZE = 1024 * 1024


def is_pdf(extension: str) -> bool:
    return extension.lower() == ".pdf"


def content_type_for(filename: str) -> str:
    return CONTENT_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")


class FileService:
    """
    Manages upload validation and the storage lifecycle.

    Directory Structure:
        storage/
        ├── .tmp/                       compression scratch files
        └── 2024/
            └── 01/
                └── 15/
                    ├── a1b2c3d4-....pdf
                    └── e5f6g7h8-....docx
    """

    def __init__(self, storage_root: Optional[str] = None, max_upload_size: Optional[int] = None):
        """
        Args:
            storage_root: Override the default storage path (used in tests).
            max_upload_size: Override settings.max_upload_size (used in tests).
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.max_upload_size = max_upload_size or settings.max_upload_size
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    # ── Validation ────────────────────────────────────────────────────────

    def validate_extension(self, filename: str) -> str:
        """
        Check the extension against the allowed note formats.

        Returns: Normalized extension (lowercase with dot).
        Raises:  ValidationError if the extension is not allowed.
        """
        ext = Path(filename).suffix.lower()
        if ext not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=(
                    f"File type '{ext or filename}' is not supported. "
                    f"Allowed types: {', '.join(sorted(ALLOWED_MIME_TYPES))}"
                ),
                field="file",
                context={"extension": ext, "allowed": sorted(ALLOWED_MIME_TYPES)},
            )
        return ext

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """
        Validate file size against the configured maximum.

        Content-Length is checked first because it is known before the body
        is read; the actual size catches clients that misreport it.
        """
        max_mb = self.max_upload_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(message="The uploaded file is empty.", field="file")

        if content_length and content_length > self.max_upload_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > self.max_upload_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def validate_mime_type(self, file_content: bytes, extension: str) -> str:
        """
        Validate the actual MIME type by inspecting the file content.

        python-magic matches the leading bytes against known signatures, so
        a shell script renamed to slides.pptx is caught here.

        Returns: Detected MIME type string (e.g., "application/pdf").
        Raises:
            ValidationError:  detected type does not match the extension
            FileStorageError: libmagic itself failed
        """
        try:
            mime_type = magic.from_buffer(file_content, mime=True)
        except magic.MagicException as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            )

        allowed = ALLOWED_MIME_TYPES[extension]
        if mime_type not in allowed:
            raise ValidationError(
                message=(
                    f"File content type '{mime_type}' does not match the '{extension}' extension."
                ),
                field="file",
                context={"detected_mime": mime_type, "allowed": sorted(allowed)},
            )

        return mime_type

    # ── Paths ─────────────────────────────────────────────────────────────

    def _generate_storage_path(self, extension: str) -> Tuple[Path, str]:
        """
        Generate a unique YYYY/MM/DD/<uuid><ext> path.

        Returns: Tuple of (absolute_path, relative_path_from_storage_root).
        """
        now = datetime.now(timezone.utc)
        date_dir = now.strftime("%Y/%m/%d")
        unique_name = f"{uuid.uuid4()}{extension}"

        relative_path = f"{date_dir}/{unique_name}"
        absolute_path = self.storage_root / relative_path

        return absolute_path, relative_path

    @property
    def temp_dir(self) -> Path:
        return self.storage_root / TEMP_DIR_NAME

    def resolve(self, relative_path: str) -> Path:
        """
        Map a client-supplied relative path to a stored file.

        Raises:
            ValidationError: the path escapes the storage root or targets scratch space
            NotFoundError:   nothing is stored there
        """
        full_path = (self.storage_root / relative_path).resolve()
        if not full_path.is_relative_to(self.storage_root) or full_path == self.storage_root:
            raise ValidationError(message="Invalid file path", field="file_path")
        if full_path.is_relative_to(self.temp_dir):
            raise NotFoundError(resource="file", resource_id=relative_path)
        if not full_path.is_file():
            raise NotFoundError(resource="file", resource_id=relative_path)
        return full_path

    # ── Storage ───────────────────────────────────────────────────────────

    async def store_file(self, content: bytes, extension: str) -> Tuple[str, str]:
        """
        Write validated file content to disk.

        Returns: Tuple of (absolute_path, relative_path).
        Raises:  FileStorageError if directory creation or file write fails.
        """
        absolute_path, relative_path = self._generate_storage_path(extension)

        try:
            await aiofiles.os.makedirs(absolute_path.parent, exist_ok=True)

            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)

            logger.info("File stored: %s (%d bytes)", relative_path, len(content))
            return str(absolute_path), relative_path

        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded file. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

    async def replace_file(self, source_path: str, target_path: str) -> None:
        """
        Move `source_path` over `target_path`.

        A plain rename when both are on the same filesystem (the default
        scratch directory is inside the storage root). When COMPRESSION_TEMP_DIR
        lives on another device the rename fails with EXDEV; the file is then
        copied next to the target and renamed into place, so readers never
        see a half-written file.
        """
        try:
            try:
                await aiofiles.os.replace(source_path, target_path)
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
                logger.debug("Cross-device move of %s, copying", Path(source_path).name)
                await self._copy_into_place(source_path, target_path)
                await aiofiles.os.remove(source_path)
            logger.info("Replaced %s with %s", Path(target_path).name, Path(source_path).name)
        except OSError as e:
            logger.error("Failed to replace %s: %s", target_path, str(e))
            raise FileStorageError(
                message="Failed to save the compressed file. Please try again.",
                context={"source": source_path, "target": target_path, "os_error": str(e)},
            )

    async def _copy_into_place(self, source_path: str, target_path: str) -> None:
        """Copy to a sibling staging file, then rename it over the target."""
        target = Path(target_path)
        staging = target.with_name(f".{target.name}.{uuid.uuid4().hex}.partial")
        try:
            async with aiofiles.open(source_path, "rb") as src, aiofiles.open(staging, "wb") as dst:
                while True:
                    chunk = await src.read(COPY_CHUNK_SIZE)
                    if not chunk:
                        break
                    await dst.write(chunk)
            await aiofiles.os.replace(staging, target)
        except BaseException:
            await self.cleanup_file(str(staging))
            raise

    async def cleanup_file(self, file_path: str) -> None:
        """
        Remove a file from storage (used after a failed or rejected upload).

        Missing files are fine; other errors are logged and not raised, the
        request outcome is already decided when cleanup runs.
        """
        try:
            await aiofiles.os.remove(file_path)
            logger.info("Cleaned up file: %s", Path(file_path).name)
        except FileNotFoundError:
            logger.debug("Cleanup: file already gone: %s", Path(file_path).name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", file_path, str(e))

    async def validate_and_store(
        self,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> Tuple[str, str, str]:
        """
        Complete validation and storage pipeline.

        Validation order (cheapest first):
            1. Extension check
            2. Size check
            3. MIME type check (libmagic)
            4. Store file

        Returns: Tuple of (absolute_path, relative_path, detected_mime_type).
        """
        ext = self.validate_extension(filename)
        self.validate_size(content_length, len(content))
        mime_type = self.validate_mime_type(content, ext)
        absolute_path, relative_path = await self.store_file(content, ext)
        return absolute_path, relative_path, mime_type


# ── Singleton Instance ────────────────────────────────────────────────────
file_service = FileService()
