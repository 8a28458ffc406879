"""
NoteFlow Backend — Request ID Middleware
==========================================

What:  Tags every request with a correlation ID and echoes it in X-Request-ID.
Why:   Error bodies carry the same ID, so a failed upload reported by a user
       can be matched with the compressor's log lines for that request.

A client-supplied X-Request-ID is reused when it looks like an identifier
(letters, digits, '-', '_', at most 64 chars); anything else is replaced.
"""

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Stores the ID in request_id_var and request.state, then sets the response header."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        supplied = request.headers.get(REQUEST_ID_HEADER, "")
        rid = supplied if _VALID_REQUEST_ID.match(supplied) else new_request_id()

        # Not reset afterwards: the catch-all 500 handler runs outside this
        # middleware and still needs the ID
        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
