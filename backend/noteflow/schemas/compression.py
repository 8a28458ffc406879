"""
NoteFlow Backend — Compression Value Types
============================================

What:  Pydantic models for the PDF compressor's inputs and outputs.
Why:   The compressor is a pure function of its explicit inputs: a
       CompressionConfig built once at startup, an input path, and an
       optional budget override. These models are that contract.
Who:   Built by Settings.compression_config(); consumed by PDFCompressor
       and the Ghostscript adapter; returned to the upload flow.

Quality presets (Ghostscript -dPDFSETTINGS), weakest → strongest compression:
    prepress  highest quality, largest size
    printer   ~300 dpi
    ebook     ~150 dpi, good balance
    screen    ~72 dpi, smallest size
"""

import tempfile
from typing import List, Optional

from pydantic import BaseModel, Field

KNOWN_PRESETS = ("default", "prepress", "printer", "ebook", "screen")

# Strongest preset, used by the aggressive downsampling profile
STRONGEST_PRESET = "screen"


def normalize_preset(raw: str) -> str:
    """Accept "/ebook", " ebook " or "EBOOK" and return "ebook"."""
    return raw.strip().lstrip("/").strip().lower()


class CompressionProfile(BaseModel):
    """
    One compression attempt strategy: a quality preset plus extra directives.

    Profiles are tried in order, highest fidelity first.
    """

    quality: str = Field(description="Ghostscript PDFSETTINGS preset, without the leading slash")
    extra_args: List[str] = Field(default_factory=list, description="Additional -d directives")

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        return f"{self.quality}+downsample" if self.extra_args else self.quality


class CompressionResult(BaseModel):
    """
    What the compressor hands back to its caller.

    path:        file to use from now on (the original when compressed=False)
    size:        size of that file in bytes
    compressed:  True when `path` is a freshly produced file the caller now owns
    """

    path: str
    size: int = Field(ge=0)
    compressed: bool

    model_config = {"frozen": True}


class CompressionConfig(BaseModel):
    """Immutable compressor configuration, built once at process start."""

    max_bytes: int = Field(default=10 * 1024 * 1024, ge=1, description="Size budget in bytes")
    ghostscript_path: Optional[str] = Field(default=None, description="Explicit executable override")
    qualities: List[str] = Field(default_factory=lambda: ["ebook", "screen"])
    aggressive: bool = Field(default=True, description="Append the downsampling profile")
    color_resolution: int = Field(default=96, ge=1)
    gray_resolution: int = Field(default=96, ge=1)
    mono_resolution: int = Field(default=150, ge=1)
    compatibility_level: str = Field(default="1.4")
    timeout_seconds: float = Field(default=60, gt=0)
    probe_timeout_seconds: float = Field(default=5, gt=0)
    temp_dir: str = Field(default_factory=tempfile.gettempdir)

    model_config = {"frozen": True}


class GhostscriptStatus(BaseModel):
    """Result of the availability probe."""

    available: bool
    executable: Optional[str] = None
    version: Optional[str] = None
