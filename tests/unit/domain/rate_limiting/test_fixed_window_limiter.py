"""
Unit tests for the fixed-window admission engine.

Covers the quota boundary, counting of rejected checks, window expiry,
concurrent first writers and fail-open behaviour on store errors.
"""

import asyncio

import pytest

from shopguard.core.exceptions import StoreUnavailableError
from shopguard.domain.rate_limiting.repositories import CounterStore
from shopguard.domain.rate_limiting.services import FixedWindowRateLimiter

KEY = "rate_limit:ip:1.2.3.4"


class TestFixedWindowScenario:
    @pytest.mark.asyncio
    async def test_three_per_minute(self, limiter, clock):
        """Checks 1-3 admit with remaining 2, 1, 0; check 4 rejects."""
        remaining = []
        for _ in range(3):
            decision = await limiter.check(KEY, limit=3, window_seconds=60)
            assert decision.admitted is True
            remaining.append(decision.info.remaining)
        assert remaining == [2, 1, 0]

        fourth = await limiter.check(KEY, limit=3, window_seconds=60)
        assert fourth.admitted is False
        assert fourth.info.remaining == 0
        assert fourth.info.reset == int(clock.now) + 60
        assert fourth.info.limit == 3
        assert fourth.info.window_seconds == 60

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 5, 17])
    async def test_exactly_n_admitted_per_window(self, limiter, limit):
        results = [
            (await limiter.check(KEY, limit=limit, window_seconds=60)).admitted
            for _ in range(limit + 5)
        ]
        assert results == [True] * limit + [False] * 5

    @pytest.mark.asyncio
    async def test_rejected_checks_still_count(self, limiter, memory_store):
        for _ in range(5):
            await limiter.check(KEY, limit=2, window_seconds=60)
        assert await memory_store.get(KEY) == 5
        decision = await limiter.check(KEY, limit=2, window_seconds=60)
        assert decision.count == 6

    @pytest.mark.asyncio
    async def test_reset_reflects_time_left_in_window(self, limiter, clock):
        await limiter.check(KEY, limit=3, window_seconds=60)
        clock.advance(45)
        decision = await limiter.check(KEY, limit=3, window_seconds=60)
        assert decision.info.reset == int(clock.now) + 15

    @pytest.mark.asyncio
    async def test_counter_resets_after_window(self, limiter, clock):
        for _ in range(4):
            await limiter.check(KEY, limit=3, window_seconds=60)

        clock.advance(60)
        decision = await limiter.check(KEY, limit=3, window_seconds=60)
        assert decision.admitted is True
        assert decision.count == 1
        assert decision.info.remaining == 2

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, limiter):
        await limiter.check(KEY, limit=1, window_seconds=60)
        other = await limiter.check("rate_limit:ip:5.6.7.8", limit=1, window_seconds=60)
        assert other.admitted is True


class TestFixedWindowConcurrency:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 10, 50])
    async def test_two_n_concurrent_checks_admit_exactly_n(self, limiter, memory_store, limit):
        decisions = await asyncio.gather(
            *(limiter.check(KEY, limit=limit, window_seconds=60) for _ in range(2 * limit))
        )
        assert sum(d.admitted for d in decisions) == limit
        assert sum(not d.admitted for d in decisions) == limit
        assert sorted(d.count for d in decisions) == list(range(1, 2 * limit + 1))
        assert await memory_store.get(KEY) == 2 * limit


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_store_error_admits_and_reports_degraded(self, mocker, metrics, clock):
        store = mocker.AsyncMock(spec=CounterStore)
        store.increment_with_expiry.side_effect = StoreUnavailableError("connection refused")
        logger = mocker.patch("shopguard.domain.rate_limiting.services.logger")
        limiter = FixedWindowRateLimiter(store, metrics=metrics, clock=clock)

        decision = await limiter.check(KEY, limit=1, window_seconds=60, rule_name="default")

        assert decision.admitted is True
        assert decision.degraded is True
        assert decision.info is None
        logger.warning.assert_called_once()
        assert logger.warning.call_args.args[0] == "rate_limit_store_unavailable"
        assert metrics.get_metrics()["totals"]["degraded"] == 1
        assert metrics.get_metrics()["rules"]["default"]["degraded"] == 1

    @pytest.mark.asyncio
    async def test_fail_open_without_metrics(self, mocker, clock):
        store = mocker.AsyncMock(spec=CounterStore)
        store.increment_with_expiry.side_effect = StoreUnavailableError()
        limiter = FixedWindowRateLimiter(store, clock=clock)
        assert (await limiter.check(KEY, limit=1, window_seconds=60)).admitted is True


class TestPeekAndClear:
    @pytest.mark.asyncio
    async def test_peek_does_not_consume_quota(self, limiter, memory_store, clock):
        await limiter.check(KEY, limit=3, window_seconds=60)
        clock.advance(10)

        info = await limiter.peek(KEY, limit=3, window_seconds=60)
        assert info.remaining == 2
        assert info.reset == int(clock.now) + 50
        assert await memory_store.get(KEY) == 1

    @pytest.mark.asyncio
    async def test_peek_unknown_key_reports_full_quota(self, limiter, clock):
        info = await limiter.peek(KEY, limit=3, window_seconds=60)
        assert info.remaining == 3
        assert info.reset == int(clock.now) + 60

    @pytest.mark.asyncio
    async def test_peek_propagates_store_errors(self, mocker, clock):
        store = mocker.AsyncMock(spec=CounterStore)
        store.get.side_effect = StoreUnavailableError()
        limiter = FixedWindowRateLimiter(store, clock=clock)
        with pytest.raises(StoreUnavailableError):
            await limiter.peek(KEY, limit=3, window_seconds=60)

    @pytest.mark.asyncio
    async def test_clear_starts_a_fresh_window(self, limiter):
        for _ in range(3):
            await limiter.check(KEY, limit=2, window_seconds=60)
        assert await limiter.clear(KEY) is True
        decision = await limiter.check(KEY, limit=2, window_seconds=60)
        assert decision.admitted is True
        assert decision.count == 1
