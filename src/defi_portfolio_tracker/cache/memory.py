"""In-process TTL cache backend."""

import threading
import time
from collections.abc import Callable

from defi_portfolio_tracker.cache.base import BaseCache


class CacheEntry:
    """
    Serialized value with an absolute expiry instant.

    Parameters
    ----------
    payload : bytes
        Serialized value
    expires_at : float
        Expiry instant on the cache clock

    """

    __slots__ = ("expires_at", "payload")

    def __init__(self, payload: bytes, expires_at: float) -> None:
        self.payload = payload
        self.expires_at = expires_at

    def is_expired(self, now: float) -> bool:
        """
        Check if cache entry has expired.

        Parameters
        ----------
        now : float
            Current instant on the cache clock

        Returns
        -------
        bool
            True if expired, False otherwise

        """
        return now >= self.expires_at


class MemoryCache(BaseCache):
    """
    Process-local cache; entries are lost on restart.

    Expired entries are purged lazily on access, or in bulk with
    ``cleanup_expired``.

    Parameters
    ----------
    default_ttl : float
        Default time-to-live in seconds for cache entries
    clock : Callable[[], float]
        Monotonic clock, injectable for tests

    """

    def __init__(self, default_ttl: float = 300, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(default_ttl)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _read(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry.payload

    def _write(self, key: str, payload: bytes, ttl: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(payload, self._clock() + ttl)

    def _delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def _contains(self, key: str) -> bool:
        return self._read(key) is not None

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            self._entries.clear()

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries from cache.

        Returns
        -------
        int
            Number of entries removed

        """
        with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._entries[key]
        return len(expired_keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
