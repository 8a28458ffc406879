"""
NoteFlow Backend — Request Logging Middleware
===============================================

What:  One access-log line per HTTP request with status and duration.
How:   Level follows the status code (5xx ERROR, 4xx WARNING, else INFO).
       Health checks are skipped. For uploads the declared body size is
       included, since large PDFs are what makes a request slow.

Example:
    POST /api/uploads 201 8412.3ms [a1b2c3d4] from 127.0.0.1 body=15728640B
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from noteflow.middleware.request_id import request_id_var

logger = logging.getLogger("noteflow.access")

SKIPPED_PATHS = {"/health"}


def _status_level(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in SKIPPED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")
        status = response.status_code
        body_size = request.headers.get("content-length")

        logger.log(
            _status_level(status),
            "%s %s %d %.1fms [%s] from %s%s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            f" body={body_size}B" if body_size else "",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )

        return response
