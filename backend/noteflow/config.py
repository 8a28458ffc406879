"""
NoteFlow Backend — Application Configuration
==============================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
       The compressor never reads settings directly: `compression_config()`
       turns them into an immutable CompressionConfig once at startup.
Who:   Imported by main.py, the service singletons, and the tests.
When:  Loaded once at module import time; validated before app starts.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

from noteflow.schemas.compression import KNOWN_PRESETS, CompressionConfig, normalize_preset

BYTES_PER_MB = 1024 * 1024

OVERSIZE_POLICIES = {"reject", "store_original"}


def parse_qualities(raw: Optional[str]) -> List[str]:
    """
    Split a comma-separated preset ladder into normalized preset names.

    Tokens that are empty once normalized (including a bare "/") are dropped,
    order is kept: " ebook , /screen,, /" -> ["ebook", "screen"].
    """
    if not raw:
        return []
    presets = (normalize_preset(token) for token in raw.split(","))
    return [preset for preset in presets if preset]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development. Attributes are
    grouped by concern for readability.
    """

    # ── File Storage ──────────────────────────────────────────────────────
    # Root directory for uploaded notes, relative to backend CWD
    storage_root: str = Field(default="./storage")

    # What: Maximum accepted upload size in bytes (25MB)
    # Valid range: 1MB to 200MB
    max_upload_size: int = Field(default=26_214_400, ge=1_048_576, le=209_715_200)

    # ── PDF Compression ───────────────────────────────────────────────────
    # What: Size budget for stored PDFs, in megabytes
    # Values below 1 are clamped to 1 when the budget is computed
    # PDF_CLOUDINARY_MAX_MB is still read for older deployments
    pdf_max_mb: float = Field(
        default=10,
        validation_alias=AliasChoices("pdf_max_mb", "pdf_cloudinary_max_mb"),
    )

    # What: Explicit Ghostscript executable (bypasses candidate discovery)
    ghostscript_path: Optional[str] = Field(default=None)

    # What: Ordered preset ladder, highest fidelity first
    # Format: comma-separated, e.g. "ebook,screen" or "/printer,/ebook"
    pdf_gs_qualities: Optional[str] = Field(default=None)

    # What: Single preset kept for older deployments; ignored when the ladder is set
    pdf_gs_quality: Optional[str] = Field(default=None)

    # What: Extra downsampling pass after the ladder is exhausted
    pdf_gs_aggressive: bool = Field(default=True)
    pdf_gs_color_resolution: int = Field(default=96, ge=36, le=600)
    pdf_gs_gray_resolution: int = Field(default=96, ge=36, le=600)
    pdf_gs_mono_resolution: int = Field(default=150, ge=36, le=1200)
    pdf_gs_compatibility_level: str = Field(default="1.4")

    # What: Hard ceiling for a single Ghostscript run; the process is killed after it
    gs_timeout_seconds: float = Field(default=60, gt=0, le=3600)

    # What: Deadline for the `gs --version` availability probe
    gs_probe_timeout_seconds: float = Field(default=5, gt=0, le=60)

    # What: Where compression attempts write their temporary outputs
    # Default: <storage_root>/.tmp, on the same filesystem as the storage so
    # the chosen result can be moved into place with an atomic rename
    compression_temp_dir: Optional[str] = Field(default=None)

    # What: What the upload flow does when a PDF cannot be brought under budget
    # reject:         refuse the upload
    # store_original: keep the original (or the smallest compressed) file
    pdf_oversize_policy: str = Field(default="store_original")

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: Comma-separated URLs (parsed by cors_origins_list)
    cors_origins: str = Field(default="http://localhost:5173")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=5000, ge=1024, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("pdf_oversize_policy")
    @classmethod
    def validate_oversize_policy(cls, v: str) -> str:
        """Ensures the oversize policy is one the upload flow understands."""
        lower = v.strip().lower()
        if lower not in OVERSIZE_POLICIES:
            raise ValueError(
                f"Invalid pdf_oversize_policy '{v}'. Must be one of: {sorted(OVERSIZE_POLICIES)}"
            )
        return lower

    @field_validator("pdf_gs_qualities", "pdf_gs_quality")
    @classmethod
    def validate_presets(cls, v: Optional[str]) -> Optional[str]:
        """Rejects preset names Ghostscript does not know, e.g. a typo like "ebok"."""
        unknown = [preset for preset in parse_qualities(v) if preset not in KNOWN_PRESETS]
        if unknown:
            raise ValueError(
                f"Unknown Ghostscript preset(s) {unknown}. Must be one of: {list(KNOWN_PRESETS)}"
            )
        return v

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # ── Derived Values ────────────────────────────────────────────────────

    @property
    def pdf_max_bytes(self) -> int:
        """Size budget in bytes; the MB threshold never drops below 1."""
        return int(max(1.0, self.pdf_max_mb) * BYTES_PER_MB)

    @property
    def quality_ladder(self) -> List[str]:
        """
        Resolve the preset ladder.

        Precedence: PDF_GS_QUALITIES, then the legacy PDF_GS_QUALITY, then
        the built-in ["ebook", "screen"].
        """
        ladder = parse_qualities(self.pdf_gs_qualities)
        if ladder:
            return ladder
        legacy = normalize_preset(self.pdf_gs_quality or "")
        if legacy:
            return [legacy]
        return ["ebook", "screen"]

    def compression_config(self) -> CompressionConfig:
        """Build the immutable compressor configuration from these settings."""
        temp_dir = self.compression_temp_dir or str(Path(self.storage_root) / ".tmp")
        return CompressionConfig(
            max_bytes=self.pdf_max_bytes,
            ghostscript_path=(self.ghostscript_path or "").strip() or None,
            qualities=self.quality_ladder,
            aggressive=self.pdf_gs_aggressive,
            color_resolution=self.pdf_gs_color_resolution,
            gray_resolution=self.pdf_gs_gray_resolution,
            mono_resolution=self.pdf_gs_mono_resolution,
            compatibility_level=self.pdf_gs_compatibility_level,
            timeout_seconds=self.gs_timeout_seconds,
            probe_timeout_seconds=self.gs_probe_timeout_seconds,
            temp_dir=temp_dir,
        )


# ── Singleton Instance ────────────────────────────────────────────────────
settings = Settings()
