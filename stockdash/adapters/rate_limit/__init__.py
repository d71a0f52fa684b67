"""Outbound rate limiting.

The market-data provider enforces a small per-minute quota, so every provider
call is queued through ``RequestScheduler`` which admits work against a
sliding window tracked by ``SlidingWindowTracker``.
"""

from stockdash.adapters.rate_limit.base import (
    DispatcherState,
    QueueStats,
    RateLimitConfig,
    StatusSnapshot,
)
from stockdash.adapters.rate_limit.scheduler import RequestScheduler
from stockdash.adapters.rate_limit.window import SlidingWindowTracker

__all__ = [
    "DispatcherState",
    "QueueStats",
    "RateLimitConfig",
    "RequestScheduler",
    "SlidingWindowTracker",
    "StatusSnapshot",
]
