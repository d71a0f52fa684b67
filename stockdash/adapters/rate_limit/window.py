"""Sliding-window bookkeeping of dispatch timestamps.

Notes:
- Per-process only, like the rest of the scheduler.
- Not thread-safe: it is only touched from the event loop.
"""

from __future__ import annotations

from collections import deque


class SlidingWindowTracker:
    """Counts dispatches inside a sliding window of ``window_seconds``.

    Timestamps are recorded in non-decreasing order, so the oldest one is
    always at the left end and pruning pops from there.
    """

    def __init__(self, *, max_requests: int, window_seconds: float) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._timestamps: deque[float] = deque()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def record(self, now: float) -> None:
        """Count a dispatch at ``now``; callers must not go back in time."""
        self._timestamps.append(now)

    def prune(self, now: float) -> None:
        """Drop timestamps at or before ``now - window_seconds``.

        Must run before any admission decision.
        """

        cutoff = now - self._window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def count(self) -> int:
        return len(self._timestamps)

    def can_admit(self) -> bool:
        """Whether another dispatch fits. Call ``prune`` first."""
        return self.count() < self._max_requests

    def next_free_at(self, now: float) -> float:
        """Time at which the oldest tracked dispatch leaves the window.

        Args:
            now: Current clock time, returned as-is when nothing is tracked.
        """

        if not self._timestamps:
            return now
        return self._timestamps[0] + self._window_seconds

    def timestamps(self) -> list[float]:
        """Copy of the tracked timestamps, oldest first."""

        return list(self._timestamps)
