"""
Daily call budget + TTL cache for metered data providers.

Process-local and best-effort: one instance per provider, created once and
passed to every caller. Not a distributed rate limiter.

Every metered call has the same shape, wrapped by RateBudgetCache.fetch():
    cache hit → return it
    budget denied → None (never raise)
    upstream call → cache good results; failures become None
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utc_date_key(now: Callable[[], datetime]) -> str:
    return now().strftime("%Y-%m-%d")


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class BudgetStatus:
    used: int
    remaining: int
    limit: int
    is_warning: bool
    is_exhausted: bool


@dataclass
class BudgetCounter:
    """Calls consumed during one UTC day."""

    date_key: str
    daily_limit: int
    reserve: int = 1
    count: int = 0

    def roll_over(self, today: str) -> None:
        if today != self.date_key:
            if self.count:
                logger.info("Budget reset for %s (used %d/%d on %s)", today, self.count, self.daily_limit, self.date_key)
            self.date_key = today
            self.count = 0


@dataclass
class CacheEntry(Generic[T]):
    key: str
    value: T
    expires_at_ms: int


class TTLCache:
    """Expiring key/value cache. Stale entries are evicted on lookup."""

    def __init__(self, clock_ms: Callable[[], int] = _epoch_ms):
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._clock_ms = clock_ms

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock_ms() > entry.expires_at_ms:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = CacheEntry(key, value, self._clock_ms() + int(ttl_seconds * 1000))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RateBudgetCache:
    """Daily quota counter combined with a TTL cache."""

    def __init__(
        self,
        daily_limit: int,
        reserve: int = 1,
        warning_threshold: int = 5,
        *,
        name: str = "metered",
        now: Callable[[], datetime] = _utc_now,
        clock_ms: Callable[[], int] = _epoch_ms,
    ):
        if daily_limit <= reserve:
            raise ValueError(f"daily_limit ({daily_limit}) must exceed reserve ({reserve})")
        self.name = name
        self.warning_threshold = warning_threshold
        self._now = now
        self.counter = BudgetCounter(_utc_date_key(now), daily_limit, reserve)
        self.cache = TTLCache(clock_ms)

    def _roll_over(self) -> None:
        self.counter.roll_over(_utc_date_key(self._now))

    def check_and_consume(self) -> bool:
        """Consume one call if headroom above the reserve remains."""
        self._roll_over()
        c = self.counter
        if c.count >= c.daily_limit - c.reserve:
            logger.warning("%s daily budget exhausted (%d/%d), skipping upstream call", self.name, c.count, c.daily_limit)
            return False
        c.count += 1
        return True

    def status(self) -> BudgetStatus:
        self._roll_over()
        c = self.counter
        remaining = max(0, c.daily_limit - c.count)
        return BudgetStatus(
            used=c.count,
            remaining=remaining,
            limit=c.daily_limit,
            is_warning=remaining <= self.warning_threshold,
            is_exhausted=remaining <= c.reserve,
        )

    def get(self, key: str) -> Any | None:
        return self.cache.get(key)

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self.cache.set(key, value, ttl_seconds)

    async def fetch(
        self,
        key: str,
        ttl_seconds: float,
        loader: Callable[[], Awaitable[T | None]],
        *,
        accept: Callable[[T], bool] = bool,
    ) -> T | None:
        """Run one metered call through cache → budget → upstream.

        Returns None when the budget is spent or the upstream fails. Only
        results passing accept() are cached, so an empty or zero-priced
        answer is retried on the next call instead of pinned for the TTL.
        """
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        if not self.check_and_consume():
            return None

        try:
            result = await loader()
        except Exception as e:
            logger.warning("%s call %s failed: %s", self.name, key, e)
            return None

        if result is not None and accept(result):
            self.cache.set(key, result, ttl_seconds)
        return result
