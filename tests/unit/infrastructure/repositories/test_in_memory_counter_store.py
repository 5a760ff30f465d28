"""Tests for the in-process counter store."""

import asyncio

import pytest

KEY = "rate_limit:ip:1.2.3.4"


class TestInMemoryCounterStore:
    @pytest.mark.asyncio
    async def test_increment_with_expiry(self, memory_store, clock):
        assert await memory_store.increment_with_expiry(KEY, 60) == (1, 60_000)
        clock.advance(20.5)
        assert await memory_store.increment_with_expiry(KEY, 60) == (2, 39_500)

    @pytest.mark.asyncio
    async def test_key_expires_at_end_of_window(self, memory_store, clock):
        await memory_store.increment_with_expiry(KEY, 60)
        clock.advance(60)
        assert await memory_store.get(KEY) is None
        assert await memory_store.ttl(KEY) == -2
        assert await memory_store.increment_with_expiry(KEY, 60) == (1, 60_000)

    @pytest.mark.asyncio
    async def test_key_without_expiry_is_rearmed(self, memory_store):
        await memory_store.increment(KEY)
        assert await memory_store.ttl(KEY) == -1
        assert await memory_store.increment_with_expiry(KEY, 30) == (2, 30_000)

    @pytest.mark.asyncio
    async def test_set_if_absent(self, memory_store, clock):
        assert await memory_store.set_if_absent(KEY, 5, 10) is True
        assert await memory_store.set_if_absent(KEY, 6, 10) is False
        assert await memory_store.get(KEY) == 5
        clock.advance(10)
        assert await memory_store.set_if_absent(KEY, 6, 10) is True

    @pytest.mark.asyncio
    async def test_delete_only_reports_live_keys(self, memory_store, clock):
        await memory_store.increment_with_expiry(KEY, 1)
        clock.advance(2)
        assert await memory_store.delete(KEY) is False

    @pytest.mark.asyncio
    async def test_clear_and_ping(self, memory_store):
        await memory_store.increment(KEY)
        memory_store.clear()
        assert await memory_store.get(KEY) is None
        assert await memory_store.ping() is True

    @pytest.mark.asyncio
    async def test_concurrent_increments(self, memory_store):
        results = await asyncio.gather(*(memory_store.increment_with_expiry(KEY, 60) for _ in range(25)))
        assert sorted(count for count, _ in results) == list(range(1, 26))
