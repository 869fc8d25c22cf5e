# newsagg/services/ttl_policy.py
"""
Category and time-of-day aware cache TTLs.

Each category has a (peak, off_peak, event) triple in seconds. Which one
applies depends on the local time in the content market's timezone:

    breaking                  event TTL, always
    sports                    event TTL in the evening match window
    business/finance/markets  event TTL during weekday market hours
    everything known          peak TTL in business hours, off-peak otherwise
    unknown                   the default TTL
"""

from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class CategoryTTL:
    peak: int
    off_peak: int
    event: int

    def __post_init__(self):
        # Event windows may only shorten freshness, never lengthen it
        if not 0 < self.event <= self.peak <= self.off_peak:
            raise ValueError(f"TTLs must satisfy 0 < event <= peak <= off_peak, got {self}")


DEFAULT_CATEGORY_TTLS: dict[str, CategoryTTL] = {
    "breaking": CategoryTTL(peak=300, off_peak=900, event=120),
    "sports": CategoryTTL(peak=600, off_peak=1800, event=300),
    "business": CategoryTTL(peak=900, off_peak=2700, event=600),
    "politics": CategoryTTL(peak=1800, off_peak=3600, event=900),
    "technology": CategoryTTL(peak=7200, off_peak=10800, event=3600),
    "health": CategoryTTL(peak=14400, off_peak=18000, event=7200),
    "science": CategoryTTL(peak=7200, off_peak=10800, event=3600),
    "entertainment": CategoryTTL(peak=3600, off_peak=7200, event=1800),
    "general": CategoryTTL(peak=2700, off_peak=5400, event=1200),
}

# Alternate names that share a TTL row
CATEGORY_ALIASES = {
    "finance": "business",
    "markets": "business",
    "tech": "technology",
    "top": "general",
}

MARKET_CATEGORIES = {"business"}


@dataclass(frozen=True)
class EventWindows:
    """Local-time windows that shorten TTLs."""

    timezone: str = "Asia/Kolkata"
    market_open: time = time(9, 15)
    market_close: time = time(15, 30)
    business_start: time = time(9, 0)
    business_end: time = time(18, 0)
    sports_start: time = time(19, 0)
    sports_end: time = time(22, 0)

    def local(self, at: datetime) -> datetime:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        return at.astimezone(ZoneInfo(self.timezone))

    def is_market_hours(self, at: datetime) -> bool:
        local = self.local(at)
        return local.weekday() < 5 and _within(local.time(), self.market_open, self.market_close)

    def is_business_hours(self, at: datetime) -> bool:
        return _within(self.local(at).time(), self.business_start, self.business_end)

    def is_sports_window(self, at: datetime) -> bool:
        return _within(self.local(at).time(), self.sports_start, self.sports_end)


def _within(now: time, start: time, end: time) -> bool:
    """Half-open [start, end); windows may wrap past midnight."""
    if start <= end:
        return start <= now < end
    return now >= start or now < end


@dataclass(frozen=True)
class TTLPolicy:
    windows: EventWindows = field(default_factory=EventWindows)
    category_ttls: dict[str, CategoryTTL] = field(default_factory=lambda: dict(DEFAULT_CATEGORY_TTLS))
    default_ttl: int = 3600

    def canonical_category(self, category: str | None) -> str:
        category = (category or "").strip().lower()
        return CATEGORY_ALIASES.get(category, category)

    def ttl_for(self, category: str | None, at: datetime | None = None) -> int:
        """TTL in seconds for content of this category written at `at`."""
        at = at or datetime.now(timezone.utc)
        name = self.canonical_category(category)
        ttls = self.category_ttls.get(name)
        if ttls is None:
            return self.default_ttl

        if name == "breaking":
            return ttls.event
        if name == "sports" and self.windows.is_sports_window(at):
            return ttls.event
        if name in MARKET_CATEGORIES and self.windows.is_market_hours(at):
            return ttls.event
        if self.windows.is_business_hours(at):
            return ttls.peak
        return ttls.off_peak
