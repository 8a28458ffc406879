"""
NoteFlow Backend — API Endpoint Tests
=======================================

What:  HTTP-level tests for /api/uploads, /api/files and /health.
How:   httpx AsyncClient over ASGITransport; the route modules' service
       singletons are patched with instances on a temp storage root and a
       scripted Ghostscript runner.
"""

from unittest.mock import AsyncMock, patch

import pytest

from noteflow.schemas.compression import GhostscriptStatus
from noteflow.services.file_service import FileService
from noteflow.services.pdf_compress import PDFCompressor
from noteflow.services.upload_service import UploadService


@pytest.fixture
def routed_services(temp_storage, compression_config, fake_gs):
    """Factory: patch the upload routes with services built from a runner and policy."""
    patches = []

    def _install(runner=None, policy="store_original"):
        files = FileService(storage_root=temp_storage, max_upload_size=1024 * 1024)
        config = compression_config.model_copy(update={"max_bytes": 1024})
        compressor = PDFCompressor(config, runner=runner or fake_gs(), platform="linux", environ={})
        uploads = UploadService(files=files, compressor=compressor, oversize_policy=policy)
        for target, value in (
            ("noteflow.routes.uploads.file_service", files),
            ("noteflow.routes.uploads.upload_service", uploads),
        ):
            p = patch(target, value)
            p.start()
            patches.append(p)
        return uploads

    yield _install

    for p in patches:
        p.stop()


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, test_client):
        status = GhostscriptStatus(available=True, executable="gs", version="10.02.1")
        with patch(
            "noteflow.routes.health.pdf_compressor.availability",
            AsyncMock(return_value=status),
        ):
            response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["ghostscript"] == "available"
        assert body["ghostscript_version"] == "10.02.1"
        assert body["uptime_seconds"] >= 0

    @pytest.mark.asyncio
    async def test_degraded_without_ghostscript(self, test_client):
        with patch(
            "noteflow.routes.health.pdf_compressor.availability",
            AsyncMock(return_value=GhostscriptStatus(available=False)),
        ):
            response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["ghostscript"] == "unavailable"


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_and_download(self, test_client, routed_services):
        routed_services()

        response = await test_client.post(
            "/api/uploads",
            files={"file": ("week1.txt", b"Lecture notes\n", "text/plain")},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["filename"] == "week1.txt"
        assert body["mime_type"] == "text/plain"
        assert body["size"] == 14
        assert body["compressed"] is False
        assert response.headers["X-Request-ID"]

        download = await test_client.get(body["file_url"])
        assert download.status_code == 200
        assert download.content == b"Lecture notes\n"
        assert "attachment" in download.headers["content-disposition"]

    @pytest.mark.asyncio
    async def test_pdf_is_compressed(self, test_client, routed_services, fake_gs):
        routed_services(runner=fake_gs({"ebook": 600}))
        content = b"%PDF-1.7\n" + b"0" * 4000

        response = await test_client.post(
            "/api/uploads",
            files={"file": ("slides.pdf", content, "application/pdf")},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["compressed"] is True
        assert body["size"] == 600
        assert body["original_size"] == len(content)

    @pytest.mark.asyncio
    async def test_rejected_extension(self, test_client, routed_services):
        routed_services()

        response = await test_client.post(
            "/api/uploads",
            files={"file": ("run.exe", b"MZ", "application/octet-stream")},
            headers={"X-Request-ID": "trace-123"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["request_id"] == "trace-123"
        assert response.headers["X-Request-ID"] == "trace-123"

    @pytest.mark.asyncio
    async def test_content_not_matching_extension(self, test_client, routed_services):
        routed_services()

        response = await test_client.post(
            "/api/uploads",
            files={"file": ("slides.pptx", b"#!/bin/sh\nrm -rf ~\n", "application/octet-stream")},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert "does not match" in body["message"]

    @pytest.mark.asyncio
    async def test_ghostscript_missing_with_reject_policy(self, test_client, routed_services, fake_gs):
        routed_services(runner=fake_gs(missing=["gs"]), policy="reject")

        response = await test_client.post(
            "/api/uploads",
            files={"file": ("big.pdf", b"%PDF-1.7\n" + b"0" * 4000, "application/pdf")},
        )

        assert response.status_code == 503
        body = response.json()
        assert body["error"] == "compression_unavailable"
        assert "GHOSTSCRIPT_PATH" in body["details"]["remediation"]


class TestServeFile:
    @pytest.mark.asyncio
    async def test_missing_file(self, test_client, routed_services):
        routed_services()

        response = await test_client.get("/api/files/2024/01/01/missing.pdf")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_path_traversal(self, test_client, routed_services):
        routed_services()

        response = await test_client.get("/api/files/..%2F..%2Fetc%2Fpasswd")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_request_id_replaced(self, test_client, routed_services):
        routed_services()

        response = await test_client.get(
            "/api/files/2024/01/01/missing.pdf",
            headers={"X-Request-ID": "bad id with spaces"},
        )

        assert response.headers["X-Request-ID"] != "bad id with spaces"
        assert response.json()["request_id"] == response.headers["X-Request-ID"]
