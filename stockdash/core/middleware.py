"""Request correlation and access logging.

The request id comes from the incoming header (``LOG_REQUEST_ID_HEADER``)
or is generated, is visible to every log line emitted while the request is
handled (scheduler and provider logs included) and is echoed back.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response

from stockdash.core.config import settings
from stockdash.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

DURATION_HEADER = "X-Request-Duration-ms"


async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Attach the request id and timing headers and log one access line."""
    header = settings.log.request_id_header
    request_id = request.headers.get(header) or uuid.uuid4().hex
    set_request_id(request_id)

    started = time.perf_counter()
    try:
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "http.request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
            },
        )
    finally:
        clear_request_id()

    response.headers[header] = request_id
    response.headers[DURATION_HEADER] = f"{elapsed_ms:.2f}"
    return response
