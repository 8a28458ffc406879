"""
NoteFlow Backend — File Service Unit Tests
============================================

What:  Tests for FileService validation, storage, path resolution and cleanup.
How:   Each test gets a FileService rooted in its own temporary directory.

Test Strategy:
    ✅ Allowed note extensions, case-insensitive
    ✅ Rejected extensions (.exe, .gif, none)
    ✅ Size limits (empty, boundary, Content-Length)
    ✅ Content MIME type must match the extension (libmagic)
    ✅ Date-organized UUID storage paths
    ✅ Replacing across filesystems (EXDEV) falls back to copy + rename
    ✅ Path traversal and scratch directory are never served
"""

import errno
import os
import re
from pathlib import Path
from unittest.mock import patch

import magic
import pytest

from noteflow.exceptions import FileStorageError, NotFoundError, ValidationError
from noteflow.services.file_service import FileService, content_type_for


@pytest.fixture
def service(temp_storage):
    return FileService(storage_root=temp_storage, max_upload_size=1024)


class TestFileValidation:
    # ── Extension Validation ──────────────────────────────────────────────

    @pytest.mark.parametrize(
        "filename", ["notes.pdf", "slides.pptx", "essay.DOCX", "readme.md", "scan.JPeG", "todo.txt"]
    )
    def test_allowed_extensions(self, service, filename):
        assert service.validate_extension(filename) == Path(filename).suffix.lower()

    @pytest.mark.parametrize("filename", ["malware.exe", "animation.gif", "noextension", "archive.pdf.zip"])
    def test_rejected_extensions(self, service, filename):
        with pytest.raises(ValidationError, match="not supported"):
            service.validate_extension(filename)

    # ── Size Validation ───────────────────────────────────────────────────

    def test_validate_size_within_limit(self, service):
        service.validate_size(None, 1000)

    def test_validate_size_at_limit(self, service):
        service.validate_size(1024, 1024)

    def test_validate_size_over_limit(self, service):
        with pytest.raises(ValidationError, match="exceeds maximum"):
            service.validate_size(None, 1025)

    def test_validate_size_content_length_over_limit(self, service):
        with pytest.raises(ValidationError, match="exceeds maximum"):
            service.validate_size(4096, 10)

    def test_validate_size_empty_file(self, service):
        with pytest.raises(ValidationError, match="empty"):
            service.validate_size(0, 0)

    # ── MIME Type Validation ──────────────────────────────────────────────

    def test_validate_mime_type_pdf(self, service, sample_pdf_bytes):
        assert service.validate_mime_type(sample_pdf_bytes, ".pdf") == "application/pdf"

    def test_validate_mime_type_text(self, service):
        assert service.validate_mime_type(b"Lecture notes\nweek 1\n", ".txt") == "text/plain"

    @pytest.mark.parametrize(
        "content, extension",
        [
            (b"#!/bin/sh\nrm -rf ~\n", ".pptx"),
            (b"PK\x03\x04 pretending", ".pdf"),
            (b"not a pdf", ".pdf"),
            (b"MZ\x90\x00\x03\x00\x00\x00\x04\x00\x00\x00\xff\xff", ".docx"),
        ],
    )
    def test_validate_mime_type_mismatch(self, service, content, extension):
        with pytest.raises(ValidationError, match="does not match"):
            service.validate_mime_type(content, extension)

    @pytest.mark.parametrize(
        "detected, extension",
        [
            ("application/vnd.openxmlformats-officedocument.presentationml.presentation", ".pptx"),
            ("application/zip", ".docx"),
            ("application/CDFV2", ".ppt"),
            ("application/msword", ".doc"),
            ("image/jpeg", ".jpeg"),
        ],
    )
    def test_validate_mime_type_office_and_images(self, service, detected, extension):
        with patch("noteflow.services.file_service.magic.from_buffer", return_value=detected):
            assert service.validate_mime_type(b"content", extension) == detected

    def test_validate_mime_type_pdf_as_docx_rejected(self, service):
        with patch("noteflow.services.file_service.magic.from_buffer", return_value="application/pdf"):
            with pytest.raises(ValidationError) as exc_info:
                service.validate_mime_type(b"%PDF-1.4", ".docx")

        assert exc_info.value.context["detected_mime"] == "application/pdf"

    def test_validate_mime_type_libmagic_failure(self, service):
        with patch(
            "noteflow.services.file_service.magic.from_buffer",
            side_effect=magic.MagicException("could not find any valid magic files"),
        ):
            with pytest.raises(FileStorageError, match="Could not verify file type"):
                service.validate_mime_type(b"content", ".pdf")

    def test_content_type_for(self):
        assert content_type_for("Lecture.PDF") == "application/pdf"
        assert content_type_for("notes.md") == "text/markdown"
        assert content_type_for("unknown.bin") == "application/octet-stream"


class TestStorage:
    @pytest.mark.asyncio
    async def test_validate_and_store_creates_date_directory(self, service, sample_pdf_bytes):
        abs_path, rel_path, mime_type = await service.validate_and_store(
            filename="Week 3.PDF",
            content=sample_pdf_bytes,
            content_length=len(sample_pdf_bytes),
        )

        assert re.fullmatch(r"\d{4}/\d{2}/\d{2}/[0-9a-f-]{36}\.pdf", rel_path)
        assert Path(abs_path).read_bytes() == sample_pdf_bytes
        assert Path(abs_path) == service.storage_root / rel_path
        assert mime_type == "application/pdf"

    @pytest.mark.asyncio
    async def test_validate_and_store_rejects_before_writing(self, service, temp_storage):
        with pytest.raises(ValidationError):
            await service.validate_and_store("fake.pdf", b"not a pdf")

        assert list(Path(temp_storage).iterdir()) == []

    @pytest.mark.asyncio
    async def test_script_disguised_as_slides_is_not_stored(self, service, temp_storage):
        with pytest.raises(ValidationError, match="does not match"):
            await service.validate_and_store("slides.pptx", b"#!/bin/sh\nrm -rf ~\n")

        assert list(Path(temp_storage).iterdir()) == []

    @pytest.mark.asyncio
    async def test_replace_file(self, service, tmp_path):
        source = tmp_path / "compressed.pdf"
        target = tmp_path / "stored.pdf"
        source.write_bytes(b"%PDF-small")
        target.write_bytes(b"%PDF-large" * 10)

        await service.replace_file(str(source), str(target))

        assert target.read_bytes() == b"%PDF-small"
        assert not source.exists()

    @pytest.mark.asyncio
    async def test_replace_file_across_filesystems(self, service, tmp_path):
        scratch = tmp_path / "other-device"
        scratch.mkdir()
        source = scratch / "compressed.pdf"
        target = tmp_path / "stored.pdf"
        source.write_bytes(b"%PDF-small")
        target.write_bytes(b"%PDF-large" * 10)

        async def rename(src, dst):
            if Path(src).parent == scratch:
                raise OSError(errno.EXDEV, "Invalid cross-device link")
            os.replace(src, dst)

        with patch("aiofiles.os.replace", side_effect=rename):
            await service.replace_file(str(source), str(target))

        assert target.read_bytes() == b"%PDF-small"
        assert not source.exists()
        assert [p.name for p in tmp_path.iterdir() if p.is_file()] == ["stored.pdf"]

    @pytest.mark.asyncio
    async def test_replace_file_other_os_error(self, service, tmp_path):
        source = tmp_path / "compressed.pdf"
        target = tmp_path / "stored.pdf"
        source.write_bytes(b"%PDF-small")
        target.write_bytes(b"%PDF-large")

        with patch("aiofiles.os.replace", side_effect=OSError(errno.EACCES, "Permission denied")):
            with pytest.raises(FileStorageError):
                await service.replace_file(str(source), str(target))

        assert target.read_bytes() == b"%PDF-large"

    @pytest.mark.asyncio
    async def test_replace_missing_source(self, service, tmp_path):
        with pytest.raises(FileStorageError):
            await service.replace_file(str(tmp_path / "gone.pdf"), str(tmp_path / "stored.pdf"))

    # ── Cleanup ───────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_cleanup_file_removes_file(self, service, tmp_path):
        test_file = tmp_path / "test.pdf"
        test_file.write_bytes(b"test content")

        await service.cleanup_file(str(test_file))
        assert not test_file.exists()

    @pytest.mark.asyncio
    async def test_cleanup_file_nonexistent(self, service, tmp_path):
        await service.cleanup_file(str(tmp_path / "nonexistent.pdf"))


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolves_stored_file(self, service, sample_pdf_bytes):
        abs_path, rel_path = await service.store_file(sample_pdf_bytes, ".pdf")
        assert service.resolve(rel_path) == Path(abs_path)

    def test_path_traversal_rejected(self, service):
        with pytest.raises(ValidationError, match="Invalid file path"):
            service.resolve("../../etc/passwd")

    def test_sibling_prefix_rejected(self, service, temp_storage):
        # /tmp/x/storage-evil shares a string prefix with /tmp/x/storage
        evil = Path(temp_storage + "-evil")
        evil.mkdir()
        (evil / "secret.txt").write_text("nope")

        with pytest.raises(ValidationError):
            service.resolve(f"../{evil.name}/secret.txt")

    def test_missing_file(self, service):
        with pytest.raises(NotFoundError):
            service.resolve("2024/01/01/missing.pdf")

    def test_scratch_directory_hidden(self, service):
        service.temp_dir.mkdir()
        (service.temp_dir / "noteflow_compressed_1_2_0_x.pdf").write_bytes(b"%PDF-")

        with pytest.raises(NotFoundError):
            service.resolve(".tmp/noteflow_compressed_1_2_0_x.pdf")
