"""
Request middleware for tracing guest-sync calls.

Capture screens and the sign-in callback hit this service in bursts
(capture, prefill read, replay), so each request gets an id that is echoed
back and written to the log line.
"""

import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Adds request context to every call.

    Adds headers:
    - X-Request-ID: caller-supplied id, or a generated one
    - X-Response-Time: processing time in milliseconds
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or _new_request_id()
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"

        logger.info(
            f"[{request_id}] {request.method} {request.url.path} "
            f"- {response.status_code} ({elapsed_ms:.2f}ms)"
        )

        return response


def get_request_id(request: Request) -> str:
    """Get request ID from request state."""
    return getattr(request.state, "request_id", None) or _new_request_id()
