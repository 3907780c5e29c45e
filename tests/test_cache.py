# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for the TTL cache (app.agegate.cache).

Covers get/set, per-entry TTL expiry, LRU eviction, atomic
set_if_absent and the metrics snapshot.
"""

from __future__ import annotations

import asyncio

import pytest

from app.agegate.cache import TTLCache
from app.agegate.models import VerificationState


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# =========================================================================
# Basic Operations
# =========================================================================

class TestGetAndSet:
    """Test basic get/set behaviour."""

    @pytest.mark.asyncio
    async def test_set_and_get(self):
        cache = TTLCache()
        await cache.set("AV_IP_1.2.3.4", VerificationState.VERIFIED, 300)
        assert await cache.get("AV_IP_1.2.3.4") == VerificationState.VERIFIED

    @pytest.mark.asyncio
    async def test_miss_is_none(self):
        cache = TTLCache()
        assert await cache.get("AV_ACCT_1") is None

    @pytest.mark.asyncio
    async def test_stored_unverified_is_not_a_miss(self):
        """UNVERIFIED and UNKNOWN are values, distinct from a miss."""
        cache = TTLCache()
        await cache.set("a", VerificationState.UNVERIFIED, 60)
        await cache.set("b", VerificationState.UNKNOWN, 60)
        assert await cache.get("a") is VerificationState.UNVERIFIED
        assert await cache.get("b") is VerificationState.UNKNOWN

    @pytest.mark.asyncio
    async def test_overwrite(self):
        cache = TTLCache()
        await cache.set("k", VerificationState.UNVERIFIED, 60)
        await cache.set("k", VerificationState.VERIFIED, 60)
        assert await cache.get("k") == VerificationState.VERIFIED

    @pytest.mark.asyncio
    async def test_delete(self):
        cache = TTLCache()
        await cache.set("k", True, 60)
        await cache.delete("k")
        assert await cache.get("k") is None


# =========================================================================
# Expiry
# =========================================================================

class TestExpiry:
    """Entries expire independently according to their own TTL."""

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        await cache.set("k", True, 180)

        clock.now += 179
        assert await cache.get("k") is True

        clock.now += 1
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_ttls_are_per_entry(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        await cache.set("short", VerificationState.UNKNOWN, 180)
        await cache.set("long", VerificationState.VERIFIED, 10800)

        clock.now += 181
        assert await cache.get("short") is None
        assert await cache.get("long") == VerificationState.VERIFIED


# =========================================================================
# LRU Eviction
# =========================================================================

class TestLRUEviction:

    @pytest.mark.asyncio
    async def test_least_recently_used_is_evicted(self):
        cache = TTLCache(max_entries=2)
        await cache.set("a", 1, 60)
        await cache.set("b", 2, 60)
        await cache.get("a")  # b becomes LRU
        await cache.set("c", 3, 60)

        assert await cache.get("a") == 1
        assert await cache.get("b") is None
        assert await cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_replacing_key_does_not_evict(self):
        cache = TTLCache(max_entries=2)
        await cache.set("a", 1, 60)
        await cache.set("b", 2, 60)
        await cache.set("a", 10, 60)
        assert cache.stats()["size"] == 2
        assert cache.stats()["evictions"] == 0


# =========================================================================
# set_if_absent
# =========================================================================

class TestSetIfAbsent:

    @pytest.mark.asyncio
    async def test_first_caller_wins(self):
        cache = TTLCache()
        assert await cache.set_if_absent("AV_REDACT_ID_TOKEN_USED_j1", True, 10800) is True
        assert await cache.set_if_absent("AV_REDACT_ID_TOKEN_USED_j1", True, 10800) is False

    @pytest.mark.asyncio
    async def test_expired_entry_counts_as_absent(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        await cache.set_if_absent("k", True, 10)
        clock.now += 11
        assert await cache.set_if_absent("k", True, 10) is True

    @pytest.mark.asyncio
    async def test_concurrent_callers_see_one_winner(self):
        cache = TTLCache()
        results = await asyncio.gather(
            *(cache.set_if_absent("jti", True, 60) for _ in range(20))
        )
        assert results.count(True) == 1


# =========================================================================
# Metrics
# =========================================================================

class TestStats:

    @pytest.mark.asyncio
    async def test_hits_and_misses_counted(self):
        cache = TTLCache()
        await cache.set("k", True, 60)
        await cache.get("k")
        await cache.get("missing")

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["writes"] == 1
        assert stats["size"] == 1
