from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, NamedTuple, Optional, Tuple

from cachetools import TLRUCache

""" Byte-bounded response cache where each entry has its own TTL.

Brief:
  Thread-safe wrapper around cachetools.TLRUCache. Capacity is measured in
  bytes (key + payload). Expired entries are never served; when an insert
  would exceed capacity, expired entries are dropped first and then the least
  recently used live entries.
"""

_logger = logging.getLogger(__name__)


class CacheEntry(NamedTuple):
    """Stored cache record.

    Inputs:
      - key: Cache key string.
      - value: Serialized upstream answer.
      - inserted_at: Timer value at insertion.
      - ttl: Lifetime in seconds.
    """

    key: str
    value: bytes
    inserted_at: float
    ttl: int

    @property
    def expires_at(self) -> float:
        return self.inserted_at + self.ttl

    @property
    def size(self) -> int:
        return len(self.key.encode("utf-8")) + len(self.value)


def _entry_size(entry: CacheEntry) -> int:
    return entry.size


def _entry_expiry(_key: str, entry: CacheEntry, now: float) -> float:
    # Measured from the cache's own clock so TLRUCache and CacheEntry agree.
    return now + entry.ttl


class ResponseCache:
    """Thread-safe, byte-bounded cache with per-entry TTL.

    Brief:
        Used by the query handler to store packed upstream answers keyed by
        question tuples. A single instance is shared by every in-flight
        request; all access goes through one RLock.

    Inputs:
        - max_bytes: Capacity bound in bytes. 0 disables caching.
        - timer: Monotonic clock callable (injectable for tests).

    Outputs:
        ResponseCache instance

    Example use:
        >>> cache = ResponseCache(1024)
        >>> cache.set("example.com. IN A", b"dns-response-data", 60)
        True
        >>> cache.get("example.com. IN A")
        (b'dns-response-data', True)
        >>> cache.get("example.com. IN AAAA")
        (None, False)
    """

    def __init__(
        self,
        max_bytes: int,
        *,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Inputs:
            max_bytes: Non-negative capacity bound in bytes.
            timer: Clock returning seconds as float.

        Outputs:
            None
        """
        self._max_bytes = max(0, int(max_bytes))
        self._lock = threading.RLock()
        self._store: Optional[TLRUCache] = None
        if self._max_bytes > 0:
            self._store = TLRUCache(
                maxsize=self._max_bytes,
                ttu=_entry_expiry,
                timer=timer,
                getsizeof=_entry_size,
            )

        # Best-effort counters for statistics snapshots.
        self.calls_total: int = 0
        self.cache_hits: int = 0
        self.cache_misses: int = 0
        self.evictions_capacity: int = 0
        self.expirations: int = 0

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    @property
    def currsize(self) -> int:
        """Bytes accounted to live entries."""
        with self._lock:
            return int(self._store.currsize) if self._store is not None else 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._store) if self._store is not None else 0

    def get(self, key: str) -> Tuple[Optional[bytes], bool]:
        """
        Retrieve a live entry.

        Inputs:
            key: Cache key.

        Outputs:
            (value, True) when a non-expired entry exists, otherwise
            (None, False). Expired entries are never surfaced.

        Example use:
            >>> cache = ResponseCache(1024)
            >>> cache.get("missing")
            (None, False)
        """
        with self._lock:
            self.calls_total += 1
            entry = None
            if self._store is not None:
                entry = self._store.get(key)
            if entry is None:
                self.cache_misses += 1
                return None, False
            self.cache_hits += 1
            return entry.value, True

    def set(self, key: str, value: bytes, ttl: int) -> bool:
        """
        Insert or replace an entry stamped with the current time.

        Inputs:
            key: Cache key.
            value: Serialized payload.
            ttl: Lifetime in seconds; values <= 0 store nothing.

        Outputs:
            bool: True when the entry was stored.

        Notes:
            A rejected set still removes any previous value for key so a
            stale payload can never outlive the caller's intent.
        """
        ttl_int = int(ttl)
        payload = bytes(value)
        with self._lock:
            if self._store is None:
                return False
            if ttl_int <= 0:
                self._store.pop(key, None)
                return False
            # Single clock reading: TTL expiry and capacity eviction counted apart.
            with self._store.timer as now:
                self.expirations += len(self._store.expire(now))
                entry = CacheEntry(key, payload, float(now), ttl_int)
                if entry.size > self._max_bytes:
                    self._store.pop(key, None)
                    _logger.debug(
                        "Not caching %r: entry of %d bytes exceeds capacity %d",
                        key,
                        entry.size,
                        self._max_bytes,
                    )
                    return False
                before = len(self._store)
                replacing = key in self._store
                self._store[key] = entry
                evicted = before + (0 if replacing else 1) - len(self._store)
            if evicted > 0:
                self.evictions_capacity += evicted
                _logger.debug(
                    "ResponseCache size eviction: %d entries dropped for %r",
                    evicted,
                    key,
                )
            return True

    def delete(self, key: str) -> bool:
        """Remove key; returns True when a live entry was removed."""
        with self._lock:
            if self._store is None:
                return False
            return self._store.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            if self._store is not None:
                self._store.clear()

    def purge_expired(self) -> int:
        """Remove all expired entries.

        Inputs:
            None
        Outputs:
            Number of entries removed.
        """
        with self._lock:
            if self._store is None:
                return 0
            removed = len(self._store.expire() or ())
            self.expirations += removed
            return removed

    def snapshot(self) -> Dict[str, Any]:
        """Brief: Return counters and occupancy for statistics output.

        Inputs:
          - None.

        Outputs:
          - dict with entries, currsize, max_bytes and access counters.
        """
        with self._lock:
            return {
                "entries": len(self._store) if self._store is not None else 0,
                "currsize": int(self._store.currsize) if self._store is not None else 0,
                "max_bytes": self._max_bytes,
                "calls_total": self.calls_total,
                "cache_hits": self.cache_hits,
                "cache_misses": self.cache_misses,
                "evictions_capacity": self.evictions_capacity,
                "expirations": self.expirations,
            }
