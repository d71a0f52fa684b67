"""In-memory TTL cache for provider responses.

A hit here is a provider call that never reaches the request scheduler, so
it saves a quota slot. Ticker lists and price series are cached with
different lifetimes, which ``set`` takes per entry.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from hashlib import sha256
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)


class _Entry(NamedTuple):
    value: Any
    expires_at: float


@dataclass
class _Counters:
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class SimpleTTLCache:
    """Thread-safe TTL cache with least-recently-used eviction.

    Attributes:
        ttl_seconds: Lifetime of entries stored without an explicit TTL.
        max_entries: Capacity before LRU eviction (None for unbounded).
    """

    def __init__(self, ttl_seconds: int = 300, max_entries: int | None = 256) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._counters = _Counters()
        self._lock = threading.RLock()

    def get(self, key: str) -> Any | None:
        """Return the live value for ``key``, or None on a miss.

        An expired entry is dropped on access and counted as an eviction.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at <= time.time():
                del self._entries[key]
                self._counters.evictions += 1
                entry = None

            if entry is None:
                self._counters.misses += 1
                logger.debug("cache.miss", extra={"cache_key": key[:16]})
                return None

            self._entries.move_to_end(key)
            self._counters.hits += 1
            logger.debug("cache.hit", extra={"cache_key": key[:16]})
            return entry.value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store ``value`` under ``key``.

        Args:
            key: Cache key, usually from ``build_cache_key``.
            value: Anything; callers store pydantic dumps or model lists.
            ttl_seconds: Lifetime for this entry; defaults to ``ttl_seconds``.
        """
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        now = time.time()
        with self._lock:
            self._drop_expired(now)
            self._entries[key] = _Entry(value, now + ttl)
            self._entries.move_to_end(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
                    self._counters.evictions += 1

        logger.debug("cache.set", extra={"cache_key": key[:16], "ttl_s": ttl})

    def clear(self) -> None:
        """Drop every entry and reset the counters."""
        with self._lock:
            self._entries.clear()
            self._counters = _Counters()

    def stats(self) -> dict[str, int | float | None]:
        """Counters and sizes, never values."""
        with self._lock:
            return {
                "ttl_seconds": self.ttl_seconds,
                "max_entries": self.max_entries,
                "entries": len(self._entries),
                **asdict(self._counters),
            }

    def _drop_expired(self, now: float) -> None:
        for key in [k for k, entry in self._entries.items() if entry.expires_at <= now]:
            del self._entries[key]
            self._counters.evictions += 1


def build_cache_key(*parts: str) -> str:
    """Hash ordered string parts into a fixed-length key.

    Parts are separated by a unit separator so ``("ab", "c")`` and
    ``("a", "bc")`` give different keys.

    Examples:
        >>> build_cache_key("prices", "AAPL") == build_cache_key("prices", "AAPL")
        True
    """
    return sha256("\x1f".join(parts).encode() + b"\x1f").hexdigest()
