"""Pydantic schemas for request scheduler introspection."""

from __future__ import annotations

import time

from pydantic import BaseModel, Field

from stockdash.adapters.rate_limit.base import QueueStats, StatusSnapshot


class RateLimitStatusResponse(BaseModel):
    """Scheduler status for countdown/feedback widgets."""

    requests_in_window: int
    max_requests: int
    queue_length: int
    can_dispatch_now: bool
    next_available_at: float = Field(
        ...,
        description="UNIX epoch seconds at which the next quota slot frees up.",
    )
    retry_after_seconds: float = Field(
        ...,
        description="Seconds until a slot frees up (0 when one is free).",
    )

    @classmethod
    def from_snapshot(cls, snapshot: StatusSnapshot) -> "RateLimitStatusResponse":
        """Convert a scheduler snapshot for the API.

        Args:
            snapshot: Result of ``RequestScheduler.get_status()``.

        Returns:
            Response with ``next_available_at`` moved from the scheduler's
            monotonic clock to epoch seconds.
        """
        return cls(
            requests_in_window=snapshot.requests_in_window,
            max_requests=snapshot.max_requests,
            queue_length=snapshot.queue_length,
            can_dispatch_now=snapshot.can_dispatch_now,
            next_available_at=time.time() + snapshot.retry_after_seconds,
            retry_after_seconds=snapshot.retry_after_seconds,
        )


class QueueStatsResponse(BaseModel):
    """Waiting times of the requests still queued, in seconds."""

    total_queued: int
    average_wait_seconds: float = Field(..., description="Mean age of queued requests (0 when empty).")
    oldest_request_age_seconds: float = Field(..., description="Age of the head of the queue (0 when empty).")

    @classmethod
    def from_stats(cls, stats: QueueStats) -> "QueueStatsResponse":
        """Build the response from ``RequestScheduler.get_queue_stats()``."""
        return cls(
            total_queued=stats.total_queued,
            average_wait_seconds=stats.average_wait_seconds,
            oldest_request_age_seconds=stats.oldest_request_age_seconds,
        )


class ClearQueueResponse(BaseModel):
    """Outcome of clearing the queue. In-flight work is not counted."""

    cleared: int = Field(..., description="Number of queued requests rejected.")
