"""
NoteFlow Backend — Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions for the different error scenarios.
How:   Each exception class carries a message and an optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by services; caught by global handlers or by the upload flow.

Exception Hierarchy:
    NoteFlowError (base)
    ├── ValidationError               → 400 Bad Request (client can fix)
    ├── NotFoundError                 → 404 Not Found
    ├── FileStorageError              → 500 Internal Server Error
    └── CompressionError              → 503 Service Unavailable
        ├── ExecutableNotFoundError       (no Ghostscript candidate could be launched)
        └── ToolExecutionFailedError      (Ghostscript exited non-zero)
            └── ToolTimeoutError          (killed at the deadline)

Filesystem errors raised while compressing (missing input, permission
denied, disk full) are plain OSErrors and are not wrapped.
"""

from typing import Any, Dict, Optional

GHOSTSCRIPT_REMEDIATION = (
    "Install Ghostscript (Windows: gswin64c) or set GHOSTSCRIPT_PATH."
)


class NoteFlowError(Exception):
    """
    Base exception for all NoteFlow application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NoteFlowError):
    """
    Raised when client input fails validation.

    When:    File type not allowed, empty file, size exceeded, content not matching
             the extension, or a PDF that cannot be
             brought under budget with the reject policy.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(NoteFlowError):
    """Raised when a requested resource does not exist (HTTP 404)."""

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class FileStorageError(NoteFlowError):
    """
    Raised when storage operations fail.

    What:    Could not write, move, or delete a file on the storage volume.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CompressionError(NoteFlowError):
    """
    Base class for external compression tool failures.

    Inside the compressor these are recorded per attempt and absorbed; one
    only reaches the caller when every profile/candidate pair failed.

    HTTP:    503 Service Unavailable, with a remediation hint.
    """

    def __init__(
        self,
        message: str = "PDF compression is unavailable",
        executable: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if executable:
            ctx["executable"] = executable
        super().__init__(message=message, context=ctx)
        self.executable = executable

    @property
    def remediation(self) -> str:
        return GHOSTSCRIPT_REMEDIATION


class ExecutableNotFoundError(CompressionError):
    """The candidate executable could not be launched (missing, not executable)."""

    def __init__(
        self,
        message: Optional[str] = None,
        executable: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or f"Ghostscript executable '{executable}' could not be launched",
            executable=executable,
            context=context,
        )


class ToolExecutionFailedError(CompressionError):
    """
    The executable launched but did not produce a result.

    `stderr` holds the tail of the tool's diagnostic output; `returncode`
    is None when the process was killed.
    """

    def __init__(
        self,
        message: Optional[str] = None,
        executable: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"Ghostscript failed with code {returncode}"
            if stderr:
                message = f"{message}: {stderr}"
        ctx = context or {}
        if returncode is not None:
            ctx["returncode"] = returncode
        super().__init__(message=message, executable=executable, context=ctx)
        self.returncode = returncode
        self.stderr = stderr


class ToolTimeoutError(ToolExecutionFailedError):
    """The executable exceeded its deadline and was killed."""

    def __init__(
        self,
        executable: Optional[str] = None,
        timeout: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["timeout_seconds"] = timeout
        super().__init__(
            message=f"Ghostscript timed out after {timeout}s",
            executable=executable,
            context=ctx,
        )
        self.timeout = timeout
