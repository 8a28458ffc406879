"""
NoteFlow Backend — Best-Effort PDF Compressor
===============================================

What:  Shrinks a PDF below a size budget by re-distilling it with Ghostscript,
       trying progressively more aggressive settings.
Who:   Called by UploadService before an uploaded PDF is kept in storage.
When:  Only for files above the budget; smaller files return untouched.

Search:
    The profile ladder and the executable candidates are flattened into one
    ordered list of (profile, candidate) pairs, profile-major:

        (ebook, gs) → (screen, gs) → (screen+downsample, gs)

    Walking the list:
    - a failing candidate is recorded and the next candidate for the same
      profile is tried
    - the first candidate that succeeds settles its profile: the remaining
      candidates for that profile are skipped
    - an output within budget ends the search immediately
    - otherwise the smallest output seen so far is kept as the fallback

Temp files:
    Each attempt writes to a fresh file in config.temp_dir named
    noteflow_compressed_<pid>_<time_ns>_<attempt>_<input name>.
    Every file created during the call except the returned one is deleted
    in a finally block, whatever the outcome. The returned file belongs to
    the caller.
"""

import logging
import os
import time
from pathlib import Path
from typing import List, NamedTuple, Optional, Set

import aiofiles.os

from noteflow.config import settings
from noteflow.exceptions import (
    GHOSTSCRIPT_REMEDIATION,
    CompressionError,
    ExecutableNotFoundError,
    ToolExecutionFailedError,
)
from noteflow.schemas.compression import (
    CompressionConfig,
    CompressionProfile,
    CompressionResult,
    GhostscriptStatus,
)
from noteflow.services.ghostscript import (
    GhostscriptRunner,
    build_args,
    build_candidates,
    build_profiles,
    probe,
    run_ghostscript,
)

logger = logging.getLogger(__name__)


class Attempt(NamedTuple):
    """One cell of the profile × candidate matrix."""

    profile_index: int
    profile: CompressionProfile
    executable: str


class PDFCompressor:
    """
    Best-effort PDF compressor backed by Ghostscript.

    The instance holds only immutable configuration; every compress() call
    works on its own set of temp files, so one instance is shared by all
    requests.

    Args:
        config:   Immutable compressor configuration.
        runner:   Coroutine used to execute Ghostscript (defaults to
                  run_ghostscript; tests pass a fake).
        platform: Override of sys.platform for candidate discovery.
        environ:  Override of os.environ for candidate discovery.
    """

    def __init__(
        self,
        config: CompressionConfig,
        runner: Optional[GhostscriptRunner] = None,
        platform: Optional[str] = None,
        environ: Optional[dict] = None,
    ):
        self.config = config
        self.runner = runner or run_ghostscript
        self._platform = platform
        self._environ = environ

    # ── Plan ──────────────────────────────────────────────────────────────

    def candidates(self) -> List[str]:
        return build_candidates(
            explicit_path=self.config.ghostscript_path,
            platform=self._platform,
            environ=self._environ,
        )

    def profiles(self) -> List[CompressionProfile]:
        return build_profiles(self.config)

    def plan(self) -> List[Attempt]:
        """Every (profile, candidate) pair in the order they may be tried."""
        candidates = self.candidates()
        return [
            Attempt(index, profile, executable)
            for index, profile in enumerate(self.profiles())
            for executable in candidates
        ]

    @staticmethod
    def is_settled(attempt: Attempt, settled_profiles: Set[int]) -> bool:
        """
        First success per profile: once any candidate has run a profile
        successfully, the other candidates for it are not tried.
        """
        return attempt.profile_index in settled_profiles

    def _temp_path(self, input_path: str, attempt_number: int) -> str:
        name = (
            f"noteflow_compressed_{os.getpid()}_{time.time_ns()}_"
            f"{attempt_number}_{Path(input_path).name}"
        )
        return str(Path(self.config.temp_dir) / name)

    # ── Compression ───────────────────────────────────────────────────────

    async def compress(self, input_path: str, max_bytes: Optional[int] = None) -> CompressionResult:
        """
        Bring `input_path` under the size budget if possible.

        Args:
            input_path: Existing, readable PDF on local disk.
            max_bytes:  Budget override in bytes (defaults to config.max_bytes).

        Returns:
            CompressionResult. compressed=False means the input was already
            within budget and is returned as-is. compressed=True means `path`
            is a new file owned by the caller: the first output within budget,
            or the smallest output if none made it.

        Raises:
            ExecutableNotFoundError / ToolExecutionFailedError: no attempt
                succeeded; the error is of the last failure's class and
                chained to it.
            OSError: the input could not be read (propagated unchanged).
        """
        budget = self.config.max_bytes if max_bytes is None else max_bytes

        input_size = (await aiofiles.os.stat(input_path)).st_size
        if input_size <= budget:
            return CompressionResult(path=input_path, size=input_size, compressed=False)

        plan = self.plan()
        logger.info(
            "Compressing %s: %d bytes, budget %d bytes, %d attempt(s) planned",
            Path(input_path).name,
            input_size,
            budget,
            len(plan),
        )

        await aiofiles.os.makedirs(self.config.temp_dir, exist_ok=True)

        created: List[str] = []
        settled: Set[int] = set()
        best: Optional[CompressionResult] = None
        keep: Optional[str] = None
        last_error: Optional[CompressionError] = None

        try:
            for number, attempt in enumerate(plan):
                if self.is_settled(attempt, settled):
                    continue

                output_path = self._temp_path(input_path, number)
                created.append(output_path)
                args = build_args(
                    attempt.profile,
                    input_path=input_path,
                    output_path=output_path,
                    compatibility_level=self.config.compatibility_level,
                )

                try:
                    await self.runner(attempt.executable, args, self.config.timeout_seconds)
                    output_size = await self._output_size(output_path, attempt.executable)
                except CompressionError as e:
                    last_error = e
                    logger.warning(
                        "Ghostscript attempt %s with %s failed: %s",
                        attempt.profile.label,
                        attempt.executable,
                        e.message,
                    )
                    continue

                settled.add(attempt.profile_index)
                logger.info(
                    "Profile %s via %s produced %d bytes",
                    attempt.profile.label,
                    attempt.executable,
                    output_size,
                )

                if best is None or output_size < best.size:
                    best = CompressionResult(path=output_path, size=output_size, compressed=True)

                if output_size <= budget:
                    keep = output_path
                    return CompressionResult(path=output_path, size=output_size, compressed=True)

            if best is not None:
                logger.warning(
                    "Budget of %d bytes not reached for %s; returning smallest result (%d bytes)",
                    budget,
                    Path(input_path).name,
                    best.size,
                )
                keep = best.path
                return best

            raise self._exhausted_error(last_error, len(created)) from last_error

        finally:
            await self._cleanup(created, keep)

    async def _output_size(self, output_path: str, executable: str) -> int:
        try:
            return (await aiofiles.os.stat(output_path)).st_size
        except FileNotFoundError:
            raise ToolExecutionFailedError(
                message="Ghostscript reported success but wrote no output file",
                executable=executable,
            )

    async def _cleanup(self, paths: List[str], keep: Optional[str]) -> None:
        """Delete every path except `keep`; files never written are ignored."""
        for path in paths:
            if path == keep:
                continue
            try:
                await aiofiles.os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error("Failed to delete compression temp file %s: %s", path, e)

    def _exhausted_error(
        self, last_error: Optional[CompressionError], attempts: int
    ) -> CompressionError:
        message = (
            "Unable to compress PDF automatically (Ghostscript not available or failed). "
            + GHOSTSCRIPT_REMEDIATION
        )
        context = {"attempts": attempts}

        if last_error is None:
            return CompressionError(message="No compression profiles are configured", context=context)

        context["last_error"] = last_error.message
        if isinstance(last_error, ExecutableNotFoundError):
            error: CompressionError = ExecutableNotFoundError(
                message=message,
                executable=last_error.executable,
                context=context,
            )
        else:
            error = ToolExecutionFailedError(
                message=message,
                executable=last_error.executable,
                returncode=getattr(last_error, "returncode", None),
                stderr=getattr(last_error, "stderr", ""),
                context=context,
            )
        return error

    # ── Diagnostics ───────────────────────────────────────────────────────

    async def availability(self) -> GhostscriptStatus:
        """Probe the same candidates compression would use."""
        return await probe(
            self.candidates(),
            timeout=self.config.probe_timeout_seconds,
            runner=self.runner,
        )


# ── Singleton Instance ────────────────────────────────────────────────────
pdf_compressor = PDFCompressor(settings.compression_config())
