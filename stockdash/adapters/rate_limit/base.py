"""Value types shared by the window tracker and the request scheduler."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class RateLimitConfig:
    """Quota enforced against the provider.

    Attributes:
        max_requests: Max dispatches admitted per sliding window.
        window_seconds: Length of the sliding window.
        floor_wait_seconds: Minimum sleep while the quota is exhausted, so a
            near-zero wait does not spin the worker.

    Raises:
        ValueError: If any value is out of range.
    """

    max_requests: int = 5
    window_seconds: float = 60.0
    floor_wait_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if self.floor_wait_seconds < 0:
            raise ValueError("floor_wait_seconds must be >= 0")


class DispatcherState(str, Enum):
    IDLE = "IDLE"
    DRAINING = "DRAINING"


@dataclass(frozen=True)
class StatusSnapshot:
    """Point-in-time view of the scheduler, recomputed on every call.

    Attributes:
        requests_in_window: Dispatches still inside the sliding window.
        max_requests: Configured quota.
        queue_length: Work items waiting for dispatch.
        can_dispatch_now: Whether a slot is free right now.
        next_available_at: Clock time at which the oldest slot frees up
            (``now`` when the window is empty).
        retry_after_seconds: Seconds until a slot frees up, 0 when one is free.
    """

    requests_in_window: int
    max_requests: int
    queue_length: int
    can_dispatch_now: bool
    next_available_at: float
    retry_after_seconds: float


@dataclass(frozen=True)
class QueueStats:
    """Ages of the work items still waiting, in seconds."""

    total_queued: int
    average_wait_seconds: float
    oldest_request_age_seconds: float
