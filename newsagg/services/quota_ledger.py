# newsagg/services/quota_ledger.py
"""
Quota ledger: per-provider daily/hourly usage counters.

Admission works in two steps so concurrent callers can never overspend:

    decision = await ledger.try_reserve("gnews")   # holds one unit in flight
    ... call the provider ...
    await ledger.commit("gnews")                   # request reached the network
    # or
    await ledger.release("gnews")                  # nothing was sent

Every mutation of a provider's counter happens under that provider's
asyncio.Lock, including the scheduled rollover. Counters are persisted
through a QuotaStore; writes that fail stay pending and are retried on the
next commit and on flush() at shutdown. Store calls run in the default
executor, so a slow database write never blocks the event loop.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from newsagg import models
from newsagg.services.resilience import with_sync_retry
from newsagg.services.source_registry import SourceRegistry

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Types
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class QuotaPolicy:
    """Thresholds and reset calendar shared by all providers."""

    warning_threshold: float = 0.85
    critical_threshold: float = 0.95
    reset_hour: int = 0
    timezone: str = "Asia/Kolkata"


class QuotaStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Admitted:
    provider: str
    cost: int = 1

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Denied:
    provider: str
    reason: str  # daily_cap | hourly_cap | counter_unavailable | unknown_provider

    def __bool__(self) -> bool:
        return False


@dataclass
class QuotaCounter:
    """In-memory counter for one provider and one quota day."""

    provider: str
    day: str
    used_today: int = 0
    hour_bucket: str | None = None
    used_this_hour: int = 0
    reserved: int = 0
    last_reset_at: datetime | None = None
    approved: int = 0
    rejected: int = 0
    hourly_distribution: dict[str, int] = field(default_factory=dict)
    loaded: bool = True  # False until the persisted row for this day has been read


@dataclass(frozen=True)
class QuotaUsage:
    """Reporting snapshot for one provider."""

    provider: str
    day: str
    used_today: int
    daily_cap: int
    used_this_hour: int
    hourly_cap: int | None
    reserved: int
    usage_ratio: float
    status: QuotaStatus
    approved: int
    rejected: int
    last_reset_at: datetime | None


# -----------------------------------------------------------------------------
# Persistence
# -----------------------------------------------------------------------------


class QuotaStore(Protocol):
    def load(self, provider: str, day: str) -> QuotaCounter | None: ...

    def save(self, counter: QuotaCounter) -> None: ...


class SqlQuotaStore:
    """Persists counters to the quota_counters table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def load(self, provider: str, day: str) -> QuotaCounter | None:
        with self._session_factory() as db:
            row = (
                db.query(models.QuotaCounter)
                .filter(models.QuotaCounter.provider == provider, models.QuotaCounter.day == day)
                .first()
            )
            if row is None:
                return None
            return QuotaCounter(
                provider=row.provider,
                day=row.day,
                used_today=row.used_today,
                hour_bucket=row.hour_bucket,
                used_this_hour=row.used_this_hour,
                last_reset_at=row.last_reset_at,
            )

    @with_sync_retry(max_attempts=3, retry_exceptions=(OperationalError,))
    def save(self, counter: QuotaCounter) -> None:
        with self._session_factory() as db:
            row = (
                db.query(models.QuotaCounter)
                .filter(
                    models.QuotaCounter.provider == counter.provider,
                    models.QuotaCounter.day == counter.day,
                )
                .first()
            )
            if row is None:
                row = models.QuotaCounter(provider=counter.provider, day=counter.day)
                db.add(row)
            row.used_today = counter.used_today
            row.hour_bucket = counter.hour_bucket
            row.used_this_hour = counter.used_this_hour
            row.last_reset_at = counter.last_reset_at
            db.commit()


# -----------------------------------------------------------------------------
# Ledger
# -----------------------------------------------------------------------------


class QuotaLedger:
    """Atomic admission and usage accounting for every registered provider."""

    def __init__(
        self,
        registry: SourceRegistry,
        policy: QuotaPolicy,
        store: QuotaStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.registry = registry
        self.policy = policy
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tz = ZoneInfo(policy.timezone)
        self._counters: dict[str, QuotaCounter] = {}
        self._locks: dict[str, asyncio.Lock] = {name: asyncio.Lock() for name in registry.names()}
        self._pending: dict[tuple[str, str], QuotaCounter] = {}

    # -- calendar ------------------------------------------------------------

    def _calendar(self, now: datetime) -> tuple[str, str]:
        """Quota day (shifted by the reset hour) and local hour bucket."""
        local = now.astimezone(self._tz)
        day = (local - timedelta(hours=self.policy.reset_hour)).date().isoformat()
        return day, local.strftime("%Y-%m-%dT%H")

    async def _run_store(self, func: Callable, *args):
        # Store calls are blocking SQLAlchemy round trips
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args))

    async def _counter_for(self, provider: str, now: datetime, load: bool = True) -> QuotaCounter:
        """
        Current counter, rolling the day or hour over if needed. Caller holds the lock.

        With load=False a failed read is tolerated: the counter starts at zero
        but stays unloaded, so the persisted row is merged in on the next
        read and admissions fail closed until then.
        """
        day, hour = self._calendar(now)
        counter = self._counters.get(provider)

        if counter is None or counter.day != day:
            if counter is not None:
                # Last write for the finished day
                await self._persist(counter)
            loaded = None
            read_failed = False
            if self._store is not None:
                try:
                    loaded = await self._run_store(self._store.load, provider, day)
                except Exception:
                    if load:
                        raise
                    read_failed = True
            fresh = loaded or QuotaCounter(provider=provider, day=day, hour_bucket=hour, last_reset_at=now)
            fresh.loaded = not read_failed
            if counter is not None:
                fresh.reserved = counter.reserved
                fresh.approved = counter.approved
                fresh.rejected = counter.rejected
                logger.info(
                    f"Quota day rolled over for '{provider}' ({counter.day} -> {day})",
                    extra={"event": "quota_rollover", "provider": provider},
                )
            counter = fresh
            self._counters[provider] = counter
        elif not counter.loaded and load:
            await self._reconcile(counter)

        if counter.hour_bucket != hour:
            counter.hour_bucket = hour
            counter.used_this_hour = 0

        return counter

    async def _reconcile(self, counter: QuotaCounter) -> None:
        """Fold the persisted row into a counter that was started without it."""
        row = await self._run_store(self._store.load, counter.provider, counter.day)
        if row is not None:
            counter.used_today += row.used_today
            if row.hour_bucket == counter.hour_bucket:
                counter.used_this_hour += row.used_this_hour
        counter.loaded = True
        logger.info(
            f"Quota counter for '{counter.provider}' reloaded from store",
            extra={"event": "quota_counter_reloaded", "provider": counter.provider},
        )

    async def _persist(self, counter: QuotaCounter) -> None:
        if self._store is None:
            return
        if not counter.loaded:
            # Saving now would overwrite the stored row with a partial count
            try:
                await self._reconcile(counter)
            except Exception as e:
                logger.error(
                    f"Quota counter for '{counter.provider}' still unloaded, write deferred: {e}",
                    extra={"event": "quota_persist_deferred", "provider": counter.provider},
                )
                return
        key = (counter.provider, counter.day)
        try:
            await self._run_store(self._store.save, counter)
            self._pending.pop(key, None)
        except Exception as e:
            self._pending[key] = replace(counter, hourly_distribution=dict(counter.hourly_distribution))
            logger.error(
                f"Failed to persist quota counter for '{counter.provider}' ({counter.day}): {e}",
                extra={"event": "quota_persist_failed", "provider": counter.provider},
            )


    def _lock(self, provider: str) -> asyncio.Lock:
        return self._locks[provider]

    # -- admission -----------------------------------------------------------

    async def try_reserve(self, provider: str, cost: int = 1) -> Admitted | Denied:
        """
        Admit a call if it fits under the daily and hourly caps.

        The admitted units are held as in-flight reservations until commit()
        or release(), so they count against the caps for concurrent callers.
        Fails closed when the counter cannot be read.
        """
        if provider not in self._locks:
            return Denied(provider, "unknown_provider")
        config = self.registry.get(provider)

        async with self._lock(provider):
            now = self._clock()
            try:
                counter = await self._counter_for(provider, now)
            except Exception as e:
                logger.error(
                    f"Quota counter unavailable for '{provider}', denying: {e}",
                    extra={"event": "quota_counter_unavailable", "provider": provider},
                )
                return Denied(provider, "counter_unavailable")

            if counter.used_today + counter.reserved + cost > config.daily_cap:
                counter.rejected += 1
                return Denied(provider, "daily_cap")
            if config.hourly_cap is not None and counter.used_this_hour + counter.reserved + cost > config.hourly_cap:
                counter.rejected += 1
                return Denied(provider, "hourly_cap")

            counter.reserved += cost
            counter.approved += 1
            return Admitted(provider, cost)

    async def commit(self, provider: str, cost: int = 1) -> None:
        """Record usage for a call that reached the provider."""
        async with self._lock(provider):
            now = self._clock()
            try:
                counter = await self._counter_for(provider, now)
            except Exception as e:
                logger.error(f"Quota store unreadable during commit for '{provider}': {e}")
                counter = await self._counter_for(provider, now, load=False)

            counter.reserved = max(0, counter.reserved - cost)
            counter.used_today += cost
            counter.used_this_hour += cost
            counter.hourly_distribution[counter.hour_bucket] = counter.hourly_distribution.get(counter.hour_bucket, 0) + cost
            await self._persist(counter)
            await self._retry_pending()

        ratio = self.usage_ratio(provider)
        if ratio >= self.policy.critical_threshold:
            logger.warning(
                f"Quota critical for '{provider}': {ratio:.0%} used",
                extra={"event": "quota_critical", "provider": provider, "ratio": round(ratio, 4)},
            )
        elif ratio >= self.policy.warning_threshold:
            logger.info(
                f"Quota warning for '{provider}': {ratio:.0%} used",
                extra={"event": "quota_warning", "provider": provider, "ratio": round(ratio, 4)},
            )

    async def release(self, provider: str, cost: int = 1) -> None:
        """Drop a reservation for a call that never left the process."""
        async with self._lock(provider):
            counter = self._counters.get(provider)
            if counter is not None:
                counter.reserved = max(0, counter.reserved - cost)

    # -- thresholds ----------------------------------------------------------

    def usage_ratio(self, provider: str) -> float:
        """Largest of the daily and hourly usage ratios, in-flight units included."""
        config = self.registry.get(provider)
        counter = self._counters.get(provider)
        day, hour = self._calendar(self._clock())
        if config.daily_cap == 0:
            return 1.0
        if counter is None or counter.day != day:
            return 0.0

        ratio = (counter.used_today + counter.reserved) / config.daily_cap
        if config.hourly_cap is not None:
            hourly_used = counter.used_this_hour if counter.hour_bucket == hour else 0
            if config.hourly_cap == 0:
                return 1.0
            ratio = max(ratio, (hourly_used + counter.reserved) / config.hourly_cap)
        return ratio

    def status(self, provider: str) -> QuotaStatus:
        ratio = self.usage_ratio(provider)
        if ratio >= self.policy.critical_threshold:
            return QuotaStatus.CRITICAL
        if ratio >= self.policy.warning_threshold:
            return QuotaStatus.WARNING
        return QuotaStatus.OK

    # -- lifecycle -----------------------------------------------------------

    async def load_all(self) -> None:
        """Warm counters from the store so thresholds are right after a restart."""
        for provider in self.registry.names():
            async with self._lock(provider):
                try:
                    await self._counter_for(provider, self._clock())
                except Exception as e:
                    logger.error(f"Could not load quota counter for '{provider}': {e}")

    async def reset(self, provider: str | None = None, now: datetime | None = None) -> list[str]:
        """
        Roll counters over to the current quota day and hour.

        Safe to run repeatedly: counters already on the current day and hour
        are left alone. Returns the providers that were rolled over.
        """
        targets = [provider] if provider else self.registry.names()
        rolled = []
        for name in targets:
            async with self._lock(name):
                at = now or self._clock()
                day, hour = self._calendar(at)
                counter = self._counters.get(name)
                if counter is not None and counter.day == day and counter.hour_bucket == hour:
                    continue
                try:
                    counter = await self._counter_for(name, at)
                except Exception as e:
                    logger.error(
                        f"Quota reset failed for '{name}', will retry: {e}",
                        extra={"event": "quota_reset_failed", "provider": name},
                    )
                    continue
                counter.last_reset_at = at
                await self._persist(counter)
                rolled.append(name)
        if rolled:
            logger.info(f"Quota counters reset: {', '.join(rolled)}", extra={"event": "quota_reset"})
        return rolled

    async def _retry_pending(self) -> None:
        for counter in list(self._pending.values()):
            try:
                await self._run_store(self._store.save, counter)
                self._pending.pop((counter.provider, counter.day), None)
            except Exception:
                break

    async def flush(self) -> int:
        """Persist every counter and pending write. Returns the number still pending."""
        for provider in list(self._counters):
            async with self._lock(provider):
                await self._persist(self._counters[provider])
        if self._pending:
            await self._retry_pending()
        unsaved = len(self._pending) + sum(1 for c in self._counters.values() if not c.loaded)
        if unsaved:
            logger.error(
                f"{unsaved} quota counters could not be flushed",
                extra={"event": "quota_flush_failed"},
            )
        return unsaved

    # -- reporting -----------------------------------------------------------

    def usage(self) -> list[QuotaUsage]:
        day, hour = self._calendar(self._clock())
        report = []
        for config in self.registry.by_priority(include_disabled=True):
            counter = self._counters.get(config.name)
            current = counter is not None and counter.day == day
            report.append(
                QuotaUsage(
                    provider=config.name,
                    day=day,
                    used_today=counter.used_today if current else 0,
                    daily_cap=config.daily_cap,
                    used_this_hour=counter.used_this_hour if current and counter.hour_bucket == hour else 0,
                    hourly_cap=config.hourly_cap,
                    reserved=counter.reserved if counter else 0,
                    usage_ratio=round(self.usage_ratio(config.name), 4),
                    status=self.status(config.name),
                    approved=counter.approved if counter else 0,
                    rejected=counter.rejected if counter else 0,
                    last_reset_at=counter.last_reset_at if counter else None,
                )
            )
        return report

    def stats(self) -> dict:
        """Admission totals and hourly request distribution."""
        distribution: dict[str, int] = {}
        for counter in self._counters.values():
            for bucket, count in counter.hourly_distribution.items():
                distribution[bucket] = distribution.get(bucket, 0) + count
        return {
            "approved": sum(c.approved for c in self._counters.values()),
            "rejected": sum(c.rejected for c in self._counters.values()),
            "pending_writes": len(self._pending),
            "hourly_distribution": dict(sorted(distribution.items())),
        }
