"""
NoteFlow Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixtures:
    ├── temp_storage: Temporary storage root for file operations
    ├── sample_pdf_bytes: Minimal PDF content for upload tests
    ├── make_pdf: Writes a sparse PDF-looking file of an exact size
    ├── compression_config: CompressionConfig with a per-test temp dir
    ├── fake_gs: Scripted stand-in for the Ghostscript runner
    └── test_client: HTTPX AsyncClient for API endpoint testing

No test needs a real Ghostscript install: compressors are built with the
fake runner, and tests that spawn real processes use the Python interpreter.
"""

import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

# Override settings for testing BEFORE any noteflow imports
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="noteflow_test_")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["PDF_OVERSIZE_POLICY"] = "store_original"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from noteflow.exceptions import ExecutableNotFoundError
from noteflow.schemas.compression import CompressionConfig

MB = 1024 * 1024


def write_sparse(path: Union[str, Path], size: int, header: bytes = b"%PDF-1.7\n") -> None:
    """Create a file of exactly `size` bytes without allocating the blocks."""
    with open(path, "wb") as f:
        f.write(header[:size])
        f.truncate(size)


class FakeGhostscript:
    """
    Scripted replacement for run_ghostscript().

    `outcomes` maps a profile label ("ebook", "screen", "screen+downsample")
    or an (executable, label) pair to either the output size to write or an
    exception to raise. Executables listed in `missing` raise
    ExecutableNotFoundError for every call, `--version` included.
    """

    def __init__(
        self,
        outcomes: Optional[Dict[Union[str, Tuple[str, str]], Union[int, Exception]]] = None,
        missing: Sequence[str] = (),
        version: str = "10.02.1",
    ):
        self.outcomes = outcomes or {}
        self.missing = set(missing)
        self.version = version
        self.calls: List[Tuple[str, str]] = []
        self.outputs: List[str] = []

    @staticmethod
    def label_for(args: Sequence[str]) -> str:
        quality = next(a.split("/", 1)[1] for a in args if a.startswith("-dPDFSETTINGS="))
        if "-dDownsampleColorImages=true" in args:
            return f"{quality}+downsample"
        return quality

    async def __call__(self, executable: str, args: Sequence[str], timeout: float) -> str:
        if executable in self.missing:
            raise ExecutableNotFoundError(executable=executable)
        if list(args) == ["--version"]:
            return f"{self.version}\n"

        label = self.label_for(args)
        self.calls.append((executable, label))

        outcome = self.outcomes.get((executable, label), self.outcomes.get(label))
        if outcome is None:
            raise AssertionError(f"unexpected Ghostscript call: {executable} {label}")
        if isinstance(outcome, Exception):
            raise outcome

        output = next(a[len("-sOutputFile="):] for a in args if a.startswith("-sOutputFile="))
        self.outputs.append(output)
        write_sparse(output, outcome)
        return ""


@pytest.fixture
def temp_storage(tmp_path):
    """A fresh storage root for each test."""
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def sample_pdf_bytes():
    """Smallest content libmagic reports as application/pdf."""
    return b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"


@pytest.fixture
def make_pdf(tmp_path):
    """Factory: make_pdf(size, name="input.pdf") → path of a sparse file of that size."""

    def _make(size: int, name: str = "input.pdf") -> str:
        path = tmp_path / name
        write_sparse(path, size)
        return str(path)

    return _make


@pytest.fixture
def compression_config(tmp_path):
    """10MB budget, default ladder, scratch files under tmp_path/gs-temp."""
    return CompressionConfig(
        max_bytes=10 * MB,
        ghostscript_path=None,
        qualities=["ebook", "screen"],
        aggressive=True,
        temp_dir=str(tmp_path / "gs-temp"),
    )


@pytest.fixture
def fake_gs():
    """Factory for FakeGhostscript runners."""
    return FakeGhostscript


@pytest_asyncio.fixture
async def test_client():
    """
    HTTPX AsyncClient talking to the FastAPI app through ASGITransport.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from noteflow.main import app
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
