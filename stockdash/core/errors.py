"""Error types shared by the scheduler, the provider client and the API.

Everything raised on purpose is an ``AppError``; the HTTP layer maps the
subclass (and, for provider failures, the ``ErrorKind``) to a status code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    http_status: int
    symbol: str
    retry_after: float
    timeout_seconds: float
    provider_status: str
    page: int
    max_symbols: int
    max_years: int
    request_id: str
    context: NotRequired[dict[str, Any]]


class ErrorKind(str, Enum):
    """Fixed taxonomy for failed market-data calls.

    An empty result set is not an error and has no kind.
    """

    RATE_LIMIT = "RATE_LIMIT"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


@dataclass
class ClassifiedError(AppError):
    """A provider call that failed, tagged with its ErrorKind.

    Build these with ``ClassifiedError.of(kind, message, ...)``; ``code`` is
    derived from the kind.
    """

    kind: ErrorKind = ErrorKind.API_ERROR
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def of(
        cls,
        kind: ErrorKind,
        message: str,
        details: ErrorDetails | None = None,
    ) -> "ClassifiedError":
        return cls(code=kind.value.lower(), message=message, details=details, kind=kind)


class QueueClearedError(AppError):
    """Raised on work that was still queued when the scheduler was cleared."""

    def __init__(self, message: str = "Request queue cleared") -> None:
        super().__init__(code="queue_cleared", message=message)
