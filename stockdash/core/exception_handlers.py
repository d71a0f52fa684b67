"""Translate domain errors into HTTP responses.

Every error body has the shape::

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": {...}}}

``details`` is omitted when empty. Provider failures keep their
``ErrorKind`` so the dashboard can tell "wait and retry" (429) from
"unknown symbol" (404) from "provider is down" (502/504).
"""

import logging
import math
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stockdash.core.errors import AppError, ClassifiedError, ErrorKind, QueueClearedError
from stockdash.core.logging import get_request_id

logger = logging.getLogger(__name__)

# UNAUTHORIZED means our own provider key was rejected: a gateway failure
# from the caller's side, not a 401.
KIND_STATUS: dict[ErrorKind, int] = {
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.UNAUTHORIZED: 502,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.NETWORK_ERROR: 504,
    ErrorKind.API_ERROR: 502,
}

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


def status_for_error(exc: AppError) -> int:
    """HTTP status for a domain error.

    ``ValidationAppError`` and any other plain ``AppError`` are the
    caller's fault and map to 400.
    """
    if isinstance(exc, ClassifiedError):
        return KIND_STATUS.get(exc.kind, 502)
    if isinstance(exc, QueueClearedError):
        return 503
    return 400


def _error_body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    """Build the ``{"error": {...}}`` envelope, stamped with the current request id."""
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        error["details"] = details
    return {"error": error}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an ``AppError`` with its mapped status.

    Rate-limit responses carry ``Retry-After`` (whole seconds, rounded up)
    when the provider said how long to wait.
    """
    status_code = status_for_error(exc)
    kind = exc.kind.value if isinstance(exc, ClassifiedError) else None

    log = logger.warning if status_code >= 500 else logger.info
    log(
        "http.app_error",
        extra={
            "error_code": exc.code,
            "error_kind": kind,
            "status_code": status_code,
            "path": request.url.path,
        },
    )

    headers = None
    retry_after = (exc.details or {}).get("retry_after")
    if status_code == 429 and retry_after is not None:
        headers = {"Retry-After": str(math.ceil(retry_after))}

    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, exc.details),
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort 500. The exception is logged; the client only gets a generic message."""
    logger.error(
        "http.unhandled_exception",
        exc_info=exc,
        extra={
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=500,
        content=_error_body("internal_server_error", INTERNAL_ERROR_MESSAGE),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the domain error handler and the catch-all 500 handler.

    Args:
        app: Application to register the handlers on.
    """
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
