"""
TTL cache for condition-timer summaries.

The projector talks to the SummaryCache protocol, so hosts can back it with
a shared cache and tests can drive InMemorySummaryCache with a fake clock.
Writes are last-writer-wins; a stale read during a concurrent refresh is
acceptable because token state, not the summary, is authoritative.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from ..models import Summary

logger = logging.getLogger("condition-transparency.summary")


def cache_key(group_id: str) -> str:
    return f"condition_timer_summary:{group_id}"


class SummaryCache(Protocol):
    def get(self, group_id: str, allow_stale: bool = False) -> Optional[Summary]: ...

    def put(self, group_id: str, summary: Summary, ttl: Optional[int] = None) -> None: ...

    def invalidate(self, group_id: str) -> bool: ...


@dataclass
class CacheEntry:
    """Single cache entry with TTL metadata.

    Attributes:
        key: Cache key identifier.
        summary: The cached summary.
        created_at: Clock reading when the entry was stored.
        ttl: Time to live in seconds.
    """
    key: str
    summary: Summary
    created_at: float
    ttl: int

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


@dataclass
class SummaryCacheStats:
    """Statistics for the summary cache.

    Attributes:
        total_entries: Number of entries currently in cache.
        hit_count: Number of successful cache lookups.
        miss_count: Number of failed cache lookups.
        expired_count: Number of lookups that found an expired entry.
        invalidated_count: Number of entries explicitly invalidated.
        hit_rate: Ratio of hits to total lookups (0.0-1.0).
    """
    total_entries: int
    hit_count: int
    miss_count: int
    expired_count: int
    invalidated_count: int
    hit_rate: float


class InMemorySummaryCache:
    """Process-local summary cache with TTL expiry and an injectable clock.

    Expired entries are kept until overwritten or invalidated so a refresh
    can still diff against them with ``allow_stale=True``; normal reads
    treat them as misses.

    Usage:
        cache = InMemorySummaryCache(default_ttl=300)
        cache.put("group-1", summary)
        cache.get("group-1")
        cache.invalidate("group-1")
    """

    def __init__(self, default_ttl: int = 300, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize the cache.

        Args:
            default_ttl: Default time to live for entries in seconds.
            clock: Monotonic clock returning seconds.
        """
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.default_ttl = default_ttl
        self._clock = clock
        self._hit_count = 0
        self._miss_count = 0
        self._expired_count = 0
        self._invalidated_count = 0

    def get(self, group_id: str, allow_stale: bool = False) -> Optional[Summary]:
        """Return the cached summary for a group, or None on a miss."""
        key = cache_key(group_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._miss_count += 1
                logger.debug(f"Cache miss: {key}")
                return None
            if entry.is_expired(self._clock()) and not allow_stale:
                self._expired_count += 1
                self._miss_count += 1
                logger.debug(f"Cache entry expired: {key}")
                return None
            self._hit_count += 1
            return entry.summary

    def put(self, group_id: str, summary: Summary, ttl: Optional[int] = None) -> None:
        key = cache_key(group_id)
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key,
                summary=summary,
                created_at=self._clock(),
                ttl=ttl if ttl is not None else self.default_ttl,
            )

    def invalidate(self, group_id: str) -> bool:
        """Drop a group's entry. Returns True if one was present."""
        key = cache_key(group_id)
        with self._lock:
            if key in self._entries:
                del self._entries[key]
                self._invalidated_count += 1
                logger.debug(f"Invalidated {key}")
                return True
            return False

    def get_stats(self) -> SummaryCacheStats:
        with self._lock:
            total_lookups = self._hit_count + self._miss_count
            hit_rate = self._hit_count / total_lookups if total_lookups > 0 else 0.0
            return SummaryCacheStats(
                total_entries=len(self._entries),
                hit_count=self._hit_count,
                miss_count=self._miss_count,
                expired_count=self._expired_count,
                invalidated_count=self._invalidated_count,
                hit_rate=hit_rate,
            )


__all__ = [
    "cache_key",
    "SummaryCache",
    "CacheEntry",
    "SummaryCacheStats",
    "InMemorySummaryCache",
]
