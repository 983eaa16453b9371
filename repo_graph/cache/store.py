"""In-process key/value store with per-entry time-to-live."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


@dataclass(frozen=True)
class CacheStats:
    total: int = 0
    active: int = 0
    expired: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "active": self.active, "expired": self.expired}


class CacheStore:
    """Per-entry TTL cache.

    Expired entries behave as absent and are evicted lazily by :meth:`get`;
    :meth:`cleanup` sweeps them proactively. There is no size-based eviction.

    Args:
        clock: Callable returning the current time in seconds. Injected so
            tests can drive expiry without sleeping.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or time.time
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Store ``value``, replacing any existing entry for ``key``."""
        entry = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl=ttl)
        with self._lock:
            self._entries[key] = entry
            self._on_change()

    def get(self, key: str) -> Any | None:
        """Return the stored value, or ``None`` if absent or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._entries[key]
                self._on_change()
                return None
            return entry.value

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed:
                self._on_change()
            return removed

    def delete_matching(self, predicate: Callable[[str], bool]) -> int:
        """Delete every key for which ``predicate(key)`` is true."""
        with self._lock:
            doomed = [k for k in self._entries if predicate(k)]
            for key in doomed:
                del self._entries[key]
            if doomed:
                self._on_change()
            return len(doomed)

    def cleanup(self) -> int:
        """Remove all entries expired at call time; return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            if expired:
                self._on_change()
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._on_change()

    def stats(self) -> CacheStats:
        """Count entries without evicting anything."""
        now = self._clock()
        with self._lock:
            total = len(self._entries)
            expired = sum(1 for e in self._entries.values() if e.is_expired(now))
        return CacheStats(total=total, active=total - expired, expired=expired)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def _on_change(self) -> None:
        """Hook called with the lock held after every mutation."""
