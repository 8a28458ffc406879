"""
NoteFlow Backend — Ghostscript Adapter
========================================

What:  Everything that knows about the external Ghostscript binary:
       where to find it, how to build its command line, how to run it
       with a deadline, and how to tell whether it is installed at all.
Who:   PDFCompressor (compression path) and the health route / app
       lifespan (availability probe).

Candidate discovery:
    1. GHOSTSCRIPT_PATH, when set
    2. Windows only: %ProgramFiles%\\gs\\<version>\\bin\\gswin64c.exe / gswin32c.exe,
       then %ProgramFiles(x86)%, newest version first
    3. Bare command names resolved through PATH:
       Windows: gswin64c, gswin32c, gs    Others: gs

Process model:
    One process at a time, stdin closed, stdout/stderr captured.
    asyncio.wait_for bounds the run; on expiry the process is killed and
    reaped before ToolTimeoutError is raised, so no zombie outlives the call.
"""

import asyncio
import logging
import os
import re
import sys
from pathlib import Path
from typing import Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple

from noteflow.exceptions import (
    CompressionError,
    ExecutableNotFoundError,
    ToolExecutionFailedError,
    ToolTimeoutError,
)
from noteflow.schemas.compression import (
    STRONGEST_PRESET,
    CompressionConfig,
    CompressionProfile,
    GhostscriptStatus,
)

logger = logging.getLogger(__name__)

# Async callable with the signature of run_ghostscript(); injectable for tests
GhostscriptRunner = Callable[[str, Sequence[str], float], Awaitable[str]]

WINDOWS_BINARIES = ("gswin64c.exe", "gswin32c.exe")
WINDOWS_COMMANDS = ("gswin64c", "gswin32c", "gs")
POSIX_COMMAND = "gs"

# Keep only the end of stderr in error messages; Ghostscript can be chatty
STDERR_TAIL_CHARS = 2000


# ══════════════════════════════════════════════════════════════════════════
# Candidate Discovery
# ══════════════════════════════════════════════════════════════════════════

def _version_key(name: str) -> Tuple[int, ...]:
    """Numeric sort key: gs10.02.1 -> (10, 2, 1), so 10.x sorts above 9.x."""
    return tuple(int(part) for part in re.findall(r"\d+", name))


def _windows_install_candidates(environ: Mapping[str, str]) -> List[str]:
    """Versioned installs under the Program Files directories, newest first."""
    found: List[str] = []
    bases = [environ.get("ProgramFiles"), environ.get("ProgramFiles(x86)")]
    for base in filter(None, bases):
        gs_root = Path(base) / "gs"
        try:
            if not gs_root.is_dir():
                continue
            versions = sorted(
                (entry.name for entry in gs_root.iterdir() if entry.is_dir()),
                key=_version_key,
                reverse=True,
            )
        except OSError as e:
            logger.debug("Skipping unreadable Ghostscript root %s: %s", gs_root, e)
            continue

        for version in versions:
            for binary in WINDOWS_BINARIES:
                candidate = gs_root / version / "bin" / binary
                if candidate.exists():
                    found.append(str(candidate))
    return found


def build_candidates(
    explicit_path: Optional[str] = None,
    platform: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> List[str]:
    """
    Ordered list of executables to try for the current environment.

    Args:
        explicit_path: User override; always tried first.
        platform:      sys.platform value (defaults to the running platform).
        environ:       Environment mapping (defaults to os.environ).

    Returns:
        Candidates in priority order, without duplicates.
    """
    platform = platform or sys.platform
    environ = os.environ if environ is None else environ

    candidates: List[str] = []
    if explicit_path:
        candidates.append(explicit_path)

    if platform == "win32":
        candidates.extend(_windows_install_candidates(environ))
        candidates.extend(WINDOWS_COMMANDS)
    else:
        candidates.append(POSIX_COMMAND)

    # dict.fromkeys keeps first-seen order
    return list(dict.fromkeys(candidates))


# ══════════════════════════════════════════════════════════════════════════
# Profiles & Arguments
# ══════════════════════════════════════════════════════════════════════════

def aggressive_directives(config: CompressionConfig) -> List[str]:
    """Image downsampling directives for the last-resort profile."""
    return [
        "-dDetectDuplicateImages=true",
        "-dDownsampleColorImages=true",
        "-dColorImageDownsampleType=/Bicubic",
        f"-dColorImageResolution={config.color_resolution}",
        "-dDownsampleGrayImages=true",
        "-dGrayImageDownsampleType=/Bicubic",
        f"-dGrayImageResolution={config.gray_resolution}",
        "-dDownsampleMonoImages=true",
        "-dMonoImageDownsampleType=/Bicubic",
        f"-dMonoImageResolution={config.mono_resolution}",
    ]


def build_profiles(config: CompressionConfig) -> List[CompressionProfile]:
    """
    One profile per configured preset, in order, plus the optional
    aggressive downsampling profile at the end.
    """
    profiles = [CompressionProfile(quality=quality) for quality in config.qualities]
    if config.aggressive:
        profiles.append(
            CompressionProfile(
                quality=STRONGEST_PRESET,
                extra_args=aggressive_directives(config),
            )
        )
    return profiles


def build_args(
    profile: CompressionProfile,
    input_path: str,
    output_path: str,
    compatibility_level: str = "1.4",
) -> List[str]:
    """Ghostscript command-line arguments for one compression attempt."""
    return [
        "-sDEVICE=pdfwrite",
        f"-dCompatibilityLevel={compatibility_level}",
        f"-dPDFSETTINGS=/{profile.quality}",
        "-dNOPAUSE",
        "-dQUIET",
        "-dBATCH",
        *profile.extra_args,
        f"-sOutputFile={output_path}",
        input_path,
    ]


# ══════════════════════════════════════════════════════════════════════════
# Process Execution
# ══════════════════════════════════════════════════════════════════════════

async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill a still-running process and reap it."""
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


async def run_ghostscript(executable: str, args: Sequence[str], timeout: float) -> str:
    """
    Run one Ghostscript invocation to completion or until the deadline.

    Returns:
        Decoded stdout of the process.

    Raises:
        ExecutableNotFoundError:  the executable could not be launched
        ToolTimeoutError:         still running after `timeout` seconds (killed)
        ToolExecutionFailedError: exited with a non-zero status
    """
    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ExecutableNotFoundError(
            executable=executable,
            context={"os_error": str(e)},
        ) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(process)
        raise ToolTimeoutError(executable=executable, timeout=timeout)
    finally:
        # Covers cancellation of the awaiting task as well
        if process.returncode is None:
            await _terminate(process)

    if process.returncode != 0:
        diagnostic = stderr.decode("utf-8", errors="replace").strip()
        raise ToolExecutionFailedError(
            executable=executable,
            returncode=process.returncode,
            stderr=diagnostic[-STDERR_TAIL_CHARS:],
        )

    return stdout.decode("utf-8", errors="replace")


# ══════════════════════════════════════════════════════════════════════════
# Availability Probe
# ══════════════════════════════════════════════════════════════════════════

async def probe(
    candidates: Optional[Sequence[str]] = None,
    timeout: float = 5.0,
    runner: Optional[GhostscriptRunner] = None,
) -> GhostscriptStatus:
    """
    Check whether any Ghostscript candidate answers `--version`.

    Never raises for tool problems: a launch failure, non-zero exit or
    timeout just marks that candidate unavailable and moves on.
    """
    runner = runner or run_ghostscript
    candidates = list(candidates) if candidates is not None else build_candidates()

    for executable in candidates:
        try:
            output = await runner(executable, ["--version"], timeout)
        except CompressionError as e:
            logger.debug("Ghostscript probe: %s unavailable (%s)", executable, e.message)
            continue
        version = output.strip() or None
        return GhostscriptStatus(available=True, executable=executable, version=version)

    return GhostscriptStatus(available=False)
