"""Request ID and request timing middleware.

Provides:
- RequestIDMiddleware: tags every request with an ID for log correlation,
  reusing the caller's ``X-Request-ID`` when one is sent.
- RequestTimingMiddleware: measures request duration and warns on slow requests.
"""

import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

SLOW_REQUEST_THRESHOLD_MS = 1000.0


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a request ID.

    - Stores the ID in ``request.state.request_id`` (error responses echo it).
    - Returns the ID in the ``X-Request-ID`` response header.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Measure request duration.

    Adds an ``X-Response-Time`` header and logs a WARNING for any request
    slower than one second. Provider webhook timeouts are short, so slow
    webhook acknowledgements show up here first.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        start = time.perf_counter()

        response: Response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000.0
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        if duration_ms >= SLOW_REQUEST_THRESHOLD_MS:
            logger.warning(
                "Slow request: %s %s completed in %.2f ms [request_id=%s, status=%d]",
                request.method,
                request.url.path,
                duration_ms,
                getattr(request.state, "request_id", "unknown"),
                response.status_code,
            )

        return response
