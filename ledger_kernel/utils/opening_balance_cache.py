"""
Opening-balance cache.

Party statements need the balance carried into their date range, which is
an aggregate over every earlier line.  Those aggregates are cached for a
short TTL (two minutes by default) and dropped wholesale for an
organization after every committed posting.  Reads inside the TTL window
may be stale by whatever was posted since; that window is accepted.

Keys: ``opening:{organization}:{party|all}:{start_date|none}``.

Time is injected through a Clock.  The cache is process-local and guarded
by a lock so request threads can share it.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from ledger_kernel.domain.clock import Clock
from ledger_kernel.logging_config import get_logger

logger = get_logger("utils.opening_balance_cache")

DEFAULT_TTL_SECONDS = 120

_KEY_PREFIX = "opening"


@dataclass
class CacheEntry:
    key: str
    value: Decimal
    expires_at: datetime
    organization_id: str
    party_id: str

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    expirations: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expirations": self.expirations,
            "invalidations": self.invalidations,
            "hit_rate": round(self.hit_rate, 4),
        }


@dataclass(frozen=True)
class OpeningBalanceLookup:
    """Result of ``get_with_fallback``: the value and where it came from."""

    balance: Decimal
    cached: bool
    source: str  # "cache" or "ledger"


class OpeningBalanceCache:
    """
    TTL cache of opening balances keyed by organization, party and start date.

    Invalidation granularity: one key, one party, or a whole organization.
    """

    def __init__(
        self,
        clock: Clock,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_size: int = 10_000,
    ) -> None:
        self._clock = clock
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_size = max_size
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.stats = CacheStats()

    @staticmethod
    def make_key(
        organization_id: UUID | str,
        party_id: UUID | str | None = None,
        start_date: date | None = None,
    ) -> str:
        party = str(party_id) if party_id is not None else "all"
        start = start_date.isoformat() if start_date is not None else "none"
        return f"{_KEY_PREFIX}:{organization_id}:{party}:{start}"

    def get(self, key: str) -> Decimal | None:
        now = self._clock.now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return None
            if entry.is_expired(now):
                del self._entries[key]
                self.stats.expirations += 1
                self.stats.misses += 1
                return None
            self._entries.move_to_end(key)
            self.stats.hits += 1
            return entry.value

    def put(self, key: str, value: Decimal) -> None:
        _, organization_id, party_id, _ = key.split(":", 3)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_size:
                self._entries.popitem(last=False)
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                expires_at=self._clock.now() + self._ttl,
                organization_id=organization_id,
                party_id=party_id,
            )
            self._entries.move_to_end(key)

    def get_with_fallback(
        self,
        organization_id: UUID,
        calculate: Callable[[], Decimal],
        *,
        party_id: UUID | None = None,
        start_date: date | None = None,
    ) -> OpeningBalanceLookup:
        """Serve from cache, or compute with ``calculate`` and cache the result."""
        key = self.make_key(organization_id, party_id, start_date)
        cached = self.get(key)
        if cached is not None:
            return OpeningBalanceLookup(balance=cached, cached=True, source="cache")
        value = calculate()
        self.put(key, value)
        return OpeningBalanceLookup(balance=value, cached=False, source="ledger")

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate(self, key: str) -> bool:
        with self._lock:
            if self._entries.pop(key, None) is None:
                return False
            self.stats.invalidations += 1
            return True

    def invalidate_party(self, organization_id: UUID, party_id: UUID) -> int:
        return self._drop(
            lambda e: e.organization_id == str(organization_id) and e.party_id == str(party_id)
        )

    def invalidate_organization(self, organization_id: UUID) -> int:
        count = self._drop(lambda e: e.organization_id == str(organization_id))
        if count:
            logger.debug(
                "opening_balance_cache_invalidated",
                extra={"organization_id": str(organization_id), "entries": count},
            )
        return count

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def size(self) -> int:
        return len(self._entries)

    def _drop(self, predicate: Callable[[CacheEntry], bool]) -> int:
        with self._lock:
            keys = [k for k, e in self._entries.items() if predicate(e)]
            for key in keys:
                del self._entries[key]
            self.stats.invalidations += len(keys)
            return len(keys)
