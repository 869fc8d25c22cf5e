# tests/unit/test_quota_ledger.py
"""
Unit tests for the quota ledger.

Tests admission under concurrency, daily and hourly caps, thresholds,
calendar rollover, persistence and fail-closed behaviour.
"""

import asyncio
import time
from dataclasses import replace
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from newsagg.services.quota_ledger import (
    Admitted,
    Denied,
    QuotaCounter,
    QuotaLedger,
    QuotaPolicy,
    QuotaStatus,
    SqlQuotaStore,
)
from newsagg.services.source_registry import SourceRegistry
from tests.factories import MutableClock, make_provider


class FlakyStore:
    """QuotaStore whose reads or writes can be made to fail or stall."""

    def __init__(self, fail_loads: bool = False, fail_saves: bool = False, rows=None, save_delay: float = 0.0):
        self.fail_loads = fail_loads
        self.fail_saves = fail_saves
        self.rows = dict(rows or {})
        self.save_delay = save_delay
        self.saved = []

    def load(self, provider, day):
        if self.fail_loads:
            raise OSError("quota table unreachable")
        row = self.rows.get((provider, day))
        return replace(row) if row else None

    def save(self, counter):
        if self.fail_saves:
            raise OSError("disk full")
        time.sleep(self.save_delay)
        self.saved.append((counter.provider, counter.day, counter.used_today))


def _ledger(clock, *providers, store=None, **policy):
    registry = SourceRegistry(providers)
    return QuotaLedger(registry, QuotaPolicy(**policy), store=store, clock=clock)


class TestAdmission:
    """Tests for try_reserve / commit / release."""

    @pytest.mark.asyncio
    async def test_reserve_then_commit_counts_usage(self, ledger):
        decision = await ledger.try_reserve("alpha")
        assert isinstance(decision, Admitted)
        assert decision

        await ledger.commit("alpha")
        usage = {u.provider: u for u in ledger.usage()}["alpha"]
        assert usage.used_today == 1
        assert usage.reserved == 0
        assert usage.approved == 1

    @pytest.mark.asyncio
    async def test_release_returns_reservation(self, ledger):
        await ledger.try_reserve("alpha")
        await ledger.release("alpha")
        usage = {u.provider: u for u in ledger.usage()}["alpha"]
        assert usage.used_today == 0
        assert usage.reserved == 0

    @pytest.mark.asyncio
    async def test_daily_cap_denies(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=2))
        for _ in range(2):
            assert await ledger.try_reserve("alpha")
            await ledger.commit("alpha")

        decision = await ledger.try_reserve("alpha")
        assert isinstance(decision, Denied)
        assert not decision
        assert decision.reason == "daily_cap"
        assert ledger.stats()["rejected"] == 1

    @pytest.mark.asyncio
    async def test_reservations_count_against_cap(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=1))
        assert await ledger.try_reserve("alpha")
        # Not committed yet, still holds the only unit
        decision = await ledger.try_reserve("alpha")
        assert decision.reason == "daily_cap"

    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_exceed_cap(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=5))
        decisions = await asyncio.gather(*(ledger.try_reserve("alpha") for _ in range(20)))

        assert sum(1 for d in decisions if d) == 5
        await asyncio.gather(*(ledger.commit("alpha") for d in decisions if d))
        usage = ledger.usage()[0]
        assert usage.used_today == 5
        assert usage.used_today <= usage.daily_cap

    @pytest.mark.asyncio
    async def test_hourly_cap_resets_next_hour(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=100, hourly_cap=2))
        for _ in range(2):
            assert await ledger.try_reserve("alpha")
            await ledger.commit("alpha")

        decision = await ledger.try_reserve("alpha")
        assert decision.reason == "hourly_cap"

        clock.advance(hours=1)
        assert await ledger.try_reserve("alpha")

    @pytest.mark.asyncio
    async def test_zero_cap_always_denied(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=0))
        decision = await ledger.try_reserve("alpha")
        assert decision.reason == "daily_cap"
        assert ledger.usage_ratio("alpha") == 1.0

    @pytest.mark.asyncio
    async def test_unknown_provider_denied(self, ledger):
        decision = await ledger.try_reserve("nobody")
        assert decision.reason == "unknown_provider"

    @pytest.mark.asyncio
    async def test_fails_closed_when_counter_unreadable(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1), store=FlakyStore(fail_loads=True))
        decision = await ledger.try_reserve("alpha")
        assert isinstance(decision, Denied)
        assert decision.reason == "counter_unavailable"


class TestThresholds:
    """Tests for usage_ratio and status."""

    @pytest.mark.asyncio
    async def test_fresh_provider_is_ok(self, ledger):
        assert ledger.usage_ratio("alpha") == 0.0
        assert ledger.status("alpha") == QuotaStatus.OK

    @pytest.mark.asyncio
    async def test_warning_at_85_percent(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=100))
        for _ in range(85):
            await ledger.commit("alpha")
        assert ledger.usage_ratio("alpha") == pytest.approx(0.85)
        assert ledger.status("alpha") == QuotaStatus.WARNING

    @pytest.mark.asyncio
    async def test_critical_at_95_percent(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=100))
        for _ in range(95):
            await ledger.commit("alpha")
        assert ledger.status("alpha") == QuotaStatus.CRITICAL

    @pytest.mark.asyncio
    async def test_hourly_ratio_dominates(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=1000, hourly_cap=10))
        for _ in range(9):
            await ledger.commit("alpha")
        assert ledger.usage_ratio("alpha") == pytest.approx(0.9)


class TestCalendar:
    """Tests for day rollover and reset."""

    @pytest.mark.asyncio
    async def test_new_day_starts_from_zero(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=3))
        for _ in range(3):
            await ledger.commit("alpha")
        assert not await ledger.try_reserve("alpha")

        clock.advance(days=1)
        assert ledger.usage_ratio("alpha") == 0.0
        assert await ledger.try_reserve("alpha")

    @pytest.mark.asyncio
    async def test_reset_is_idempotent(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1), make_provider("beta", 2))
        await ledger.commit("alpha")

        first = await ledger.reset()
        assert first == ["beta"]  # alpha is already on the current day and hour
        assert await ledger.reset() == []

        clock.advance(days=1)
        assert sorted(await ledger.reset()) == ["alpha", "beta"]
        assert await ledger.reset() == []
        assert ledger.usage()[0].used_today == 0

    @pytest.mark.asyncio
    async def test_reset_hour_shifts_quota_day(self):
        ist = ZoneInfo("Asia/Kolkata")
        clock = MutableClock(datetime(2024, 3, 12, 5, 59, tzinfo=ist).astimezone(timezone.utc))
        ledger = _ledger(clock, make_provider("alpha", 1), reset_hour=6)
        assert ledger.usage()[0].day == "2024-03-11"

        clock.advance(minutes=1)
        assert ledger.usage()[0].day == "2024-03-12"

    @pytest.mark.asyncio
    async def test_reservation_carries_across_rollover(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=10))
        assert await ledger.try_reserve("alpha")
        clock.advance(days=1)
        await ledger.commit("alpha")

        usage = ledger.usage()[0]
        assert usage.used_today == 1
        assert usage.reserved == 0


class TestPersistence:
    """Tests for counter persistence."""

    @pytest.mark.asyncio
    async def test_counters_survive_restart(self, clock, session_factory):
        store = SqlQuotaStore(session_factory)
        first = _ledger(clock, make_provider("alpha", 1, daily_cap=10), store=store)
        for _ in range(3):
            assert await first.try_reserve("alpha")
            await first.commit("alpha")

        second = _ledger(clock, make_provider("alpha", 1, daily_cap=10), store=store)
        await second.load_all()
        assert second.usage()[0].used_today == 3
        assert second.usage_ratio("alpha") == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_failed_writes_stay_pending_until_flush(self, clock):
        store = FlakyStore(fail_saves=True)
        ledger = _ledger(clock, make_provider("alpha", 1), store=store)
        await ledger.commit("alpha")
        assert ledger.stats()["pending_writes"] == 1
        assert await ledger.flush() == 1

        store.fail_saves = False
        assert await ledger.flush() == 0
        assert ("alpha", "2024-03-12", 1) in store.saved

    @pytest.mark.asyncio
    async def test_pending_write_retried_on_next_commit(self, clock):
        store = FlakyStore(fail_saves=True)
        ledger = _ledger(clock, make_provider("alpha", 1), make_provider("beta", 2), store=store)
        await ledger.commit("alpha")

        store.fail_saves = False
        await ledger.commit("beta")
        assert ledger.stats()["pending_writes"] == 0


class TestReporting:
    @pytest.mark.asyncio
    async def test_usage_includes_disabled_providers(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1), make_provider("beta", 2, api_key=None))
        assert [u.provider for u in ledger.usage()] == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_hourly_distribution(self, ledger, clock):
        await ledger.commit("alpha")
        clock.advance(hours=1)
        await ledger.commit("alpha")
        await ledger.commit("beta")

        distribution = ledger.stats()["hourly_distribution"]
        assert distribution == {"2024-03-12T12": 1, "2024-03-12T13": 2}

    @pytest.mark.asyncio
    async def test_last_reset_recorded(self, ledger, clock):
        await ledger.reset()
        assert ledger.usage()[0].last_reset_at == clock.now


class TestStoreFailures:
    """Tests for a slow or unreadable quota store."""

    @pytest.mark.asyncio
    async def test_slow_store_does_not_block_event_loop(self, clock):
        ledger = _ledger(clock, make_provider("alpha", 1), store=FlakyStore(save_delay=0.3))
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        task = asyncio.create_task(ticker())
        try:
            await ledger.commit("alpha")
        finally:
            task.cancel()
        assert ticks >= 5
        assert ledger.usage()[0].used_today == 1

    @pytest.mark.asyncio
    async def test_unreadable_store_at_rollover_fails_closed_until_reloaded(self, clock):
        store = FlakyStore(rows={("alpha", "2024-03-13"): QuotaCounter(provider="alpha", day="2024-03-13", used_today=5)})
        ledger = _ledger(clock, make_provider("alpha", 1, daily_cap=10), store=store)
        assert await ledger.try_reserve("alpha")

        clock.advance(days=1)
        store.fail_loads = True
        await ledger.commit("alpha")

        # The partial count for the new day is never written over the stored row
        assert not [s for s in store.saved if s[1] == "2024-03-13"]
        decision = await ledger.try_reserve("alpha")
        assert decision.reason == "counter_unavailable"

        store.fail_loads = False
        assert await ledger.try_reserve("alpha")
        usage = ledger.usage()[0]
        assert usage.used_today == 6
        assert usage.reserved == 1
        assert await ledger.flush() == 0
        assert ("alpha", "2024-03-13", 6) in store.saved
