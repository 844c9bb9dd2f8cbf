"""
In-process expiring cache for memoizing expensive aggregates.

The cache is an explicit object owned by whichever component computes the
values it stores. Expiry is measured against an injectable clock rather than
wall-clock capture, so tests can advance time deterministically.

Usage:
    from core.cache import ExpiringCache

    cache = ExpiringCache(default_ttl=30)
    summary = cache.get_or_compute("escrow:summary", compute_summary)

    # Drop a single key or everything
    cache.invalidate("escrow:summary")
    cache.invalidate()

    # Deterministic expiry in tests
    now = [0.0]
    cache = ExpiringCache(default_ttl=30, clock=lambda: now[0])

Note:
    Entries live in process memory only. Use Django's cache framework
    (Redis) when values must be shared between workers.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Hashable

V = TypeVar("V")

# Sentinel distinguishing "not cached" from a cached None
_MISSING = object()


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """A cached value and the clock reading after which it is stale."""

    value: V
    expires_at: float


class ExpiringCache(Generic[V]):
    """
    Key/value cache where every entry carries an expiry timestamp.

    Args:
        default_ttl: Lifetime in seconds for entries stored without an
            explicit ttl
        clock: Zero-argument callable returning the current time in seconds
            (default: time.monotonic)

    Thread Safety:
        Reads and writes are guarded by a lock. get_or_compute() does not
        hold the lock while computing, so two threads may compute the same
        missing key concurrently; the last write wins.
    """

    def __init__(
        self,
        default_ttl: float = 30.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._clock = clock or time.monotonic
        self._entries: dict[Hashable, CacheEntry[V]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: V | None = None) -> V | None:
        """Return the cached value, or default if missing or expired."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(self, key: Hashable, value: V, ttl: float | None = None) -> None:
        """Store value under key for ttl seconds (default_ttl when omitted)."""
        lifetime = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = CacheEntry(value, self._clock() + lifetime)

    def get_or_compute(
        self,
        key: Hashable,
        compute: Callable[[], V],
        ttl: float | None = None,
    ) -> V:
        """
        Return the cached value for key, computing and storing it on a miss.

        Exceptions raised by compute propagate and nothing is cached.
        """
        value = self._lookup(key)
        if value is not _MISSING:
            return value
        value = compute()
        self.set(key, value, ttl)
        return value

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one key, or every entry when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __contains__(self, key: Hashable) -> bool:
        return self._lookup(key) is not _MISSING

    def __len__(self) -> int:
        """Number of live (unexpired) entries."""
        with self._lock:
            now = self._clock()
            return sum(1 for e in self._entries.values() if e.expires_at > now)

    def _lookup(self, key: Hashable):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return _MISSING
            if entry.expires_at <= self._clock():
                # Expired entries are evicted lazily on access
                del self._entries[key]
                return _MISSING
            return entry.value
