"""
FastAPI middleware for request handling.
"""

import time
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from mikromon.utils.logging import get_logger, log_context

logger = get_logger(__name__)

QUIET_PREFIXES = ("/health", "/metrics")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID, honouring one supplied by the caller."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        with log_context(request_id=request_id):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response


async def request_timing_middleware(request: Request, call_next: Callable) -> Response:
    """Middleware to log request timing."""
    start_time = time.perf_counter()

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000

    # Skip probes and scrapes to reduce noise
    if not request.url.path.startswith(QUIET_PREFIXES):
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
            request_id=getattr(request.state, "request_id", None),
        )

    response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
    return response
