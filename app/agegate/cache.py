# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""In-process TTL key/value cache with LRU eviction.

Sits in front of the region, account and token lookups.  Keys are plain
strings built by the callers (``<prefix>IP_<ip>``, ``<prefix>ACCT_<id>``,
``<prefix>TOKEN_<token>``, ``<prefix>REDACT_ID_TOKEN_USED_<jti>``); values
are arbitrary, though the services only store :class:`VerificationState`
members and booleans.

Each entry carries its own TTL.  The cache is non-authoritative: the store
always wins on disagreement.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger("agegate.cache")

__all__ = [
    "CacheMetrics",
    "TTLCache",
]


# ======================================================================
# CacheMetrics
# ======================================================================


@dataclass
class CacheMetrics:
    """Operational counters for a :class:`TTLCache`.

    Attributes
    ----------
    hits : int
        Lookups that found a live entry.
    misses : int
        Lookups that found nothing or an expired entry.
    writes : int
        Successful ``set`` and ``set_if_absent`` insertions.
    evictions : int
        Entries removed by LRU pressure, expiry or ``delete``.
    """

    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0

    def to_dict(self) -> dict:
        """Serialize metrics to a plain dict for API / logging output."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "evictions": self.evictions,
        }


# ======================================================================
# TTLCache
# ======================================================================

# value, expires_at (monotonic seconds)
_Entry = Tuple[Any, float]


class TTLCache:
    """In-memory LRU + per-entry TTL cache.

    Concurrency-safe: all public coroutines acquire an ``asyncio.Lock``
    before touching internal state.  ``set_if_absent`` performs its
    check and its write under one acquisition, so concurrent callers see
    exactly one winner.

    Parameters
    ----------
    max_entries : int
        Maximum number of entries before LRU eviction kicks in.
    clock : callable, optional
        Monotonic time source, overridable in tests.
    """

    def __init__(self, max_entries: int = 100000, clock=time.monotonic) -> None:
        self._max_entries = max_entries
        self._clock = clock
        self._data: "OrderedDict[str, _Entry]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._metrics = CacheMetrics()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        """Return the live value for *key*, or ``None`` on miss."""
        async with self._lock:
            value = self._get_locked(key)
            if value is None:
                self._metrics.misses += 1
            else:
                self._metrics.hits += 1
            return value

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store *value* under *key* for *ttl_seconds*."""
        async with self._lock:
            self._put_locked(key, value, ttl_seconds)

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        """Atomically store *value* unless a live entry already exists.

        Returns
        -------
        bool
            ``True`` if this call created the entry, ``False`` if one was
            already present.
        """
        async with self._lock:
            if self._get_locked(key) is not None:
                return False
            self._put_locked(key, value, ttl_seconds)
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._evict_locked(key)

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()

    def stats(self) -> dict:
        """Return a snapshot of cache metrics and current size."""
        d = self._metrics.to_dict()
        d["size"] = len(self._data)
        return d

    # ------------------------------------------------------------------
    # Internal helpers (must be called with ``_lock`` held)
    # ------------------------------------------------------------------

    def _get_locked(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            logger.debug("Cache entry expired: %s", key[:80])
            self._evict_locked(key)
            return None
        self._data.move_to_end(key)
        return value

    def _put_locked(self, key: str, value: Any, ttl_seconds: float) -> None:
        while len(self._data) >= self._max_entries and key not in self._data:
            self._evict_lru_locked()
        self._data[key] = (value, self._clock() + ttl_seconds)
        self._data.move_to_end(key)
        self._metrics.writes += 1

    def _evict_locked(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._metrics.evictions += 1

    def _evict_lru_locked(self) -> None:
        if self._data:
            lru_key = next(iter(self._data))
            logger.debug("LRU eviction: %s", lru_key[:80])
            self._evict_locked(lru_key)
