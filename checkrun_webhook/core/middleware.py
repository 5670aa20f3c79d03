"""ASGI middleware for the check-run webhook service.

Two middlewares registered in order (outermost → innermost):
  1. RequestIdMiddleware: injects / forwards X-Request-ID; stores in ContextVar
  2. SecurityHeadersMiddleware: adds security response headers

The ContextVar `_request_id_var` is the single source of truth for the
current request ID. The logging layer reads it so every log line emitted
while handling a delivery or report carries the same ID.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# ContextVar: shared across middleware and route handlers within one request
# ---------------------------------------------------------------------------

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    """Return the current request's ID, or an empty string outside a request."""
    return _request_id_var.get()


# ---------------------------------------------------------------------------
# RequestIdMiddleware
# ---------------------------------------------------------------------------


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Read or generate X-Request-ID and make it available for the request lifetime.

    - If the caller sends X-Request-ID, that value is reused so a CI job
      can correlate its report call with server-side logs.
    - If absent, a fresh UUID4 is generated.
    - The ID is always echoed back in the response header.
    - Request duration is logged once the response is produced.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        started = time.perf_counter()

        token = _request_id_var.set(request_id)
        try:
            response = await call_next(request)
            logger.info(
                "%s %s completed with %d in %.0fms",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
        finally:
            _request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# SecurityHeadersMiddleware
# ---------------------------------------------------------------------------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach security-related headers to every outgoing response.

    The service only returns plain text and small JSON documents, so the
    headers mostly stop browsers from sniffing or framing those bodies.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-XSS-Protection"] = "0"
        return response
