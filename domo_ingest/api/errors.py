"""Exception handlers shared by the app and route tests."""

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from domo_ingest.core.error_tracker import ErrorTracker
from domo_ingest.core.exceptions import DomoException, sanitize_error

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


async def domo_exception_handler(request: Request, exc: DomoException) -> JSONResponse:
    """Render a DomoException with its own status code.

    Args:
        request: The incoming request.
        exc: The raised exception.

    Returns:
        JSON error response with consistent format.
    """
    request_id = _request_id(request)
    logger.warning(
        "Domo exception occurred",
        extra={
            "code": exc.code,
            "status_code": exc.status_code,
            "request_id": request_id,
            "path": request.url.path,
        },
    )
    ErrorTracker.get_instance().record_error(
        stage="api",
        error_type=exc.code,
        message=f"{request.method} {request.url.path}: {exc.message}",
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "code": exc.code,
            "request_id": request_id,
        },
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Map FastAPI body validation failures to 400."""
    request_id = _request_id(request)
    logger.warning(
        "Request validation error",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "error_count": len(exc.errors()),
        },
    )
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Request validation error",
            "code": "REQUEST_VALIDATION_ERROR",
            "request_id": request_id,
            "errors": [
                {"loc": list(error.get("loc", ())), "msg": error.get("msg")}
                for error in exc.errors()
            ],
        },
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log with traceback, answer 500 without internals."""
    request_id = _request_id(request)
    logger.exception(
        "Unhandled exception occurred",
        exc_info=exc,
        extra={"request_id": request_id, "path": request.url.path},
    )
    ErrorTracker.get_instance().record_error(
        stage="api",
        error_type=type(exc).__name__,
        message=f"{request.method} {request.url.path}: {exc}",
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": sanitize_error(exc),
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomoException, domo_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)
