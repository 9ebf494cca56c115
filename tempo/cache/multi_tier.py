"""Multi-tier analysis cache.

Lookup order:
1. Memory tier: bounded LRU, exact fingerprint
2. Persistent tier: DuckDB, exact fingerprint (hits are promoted to memory)
3. Similar-context search: same family and environment bucket, battery level
   within the configured tolerance (an "adapted" hit)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from tempo.cache.fingerprint import ContextFingerprint, ContextFingerprinter
from tempo.cache.memory_tier import CacheEntry, MemoryTier
from tempo.cache.persistent_tier import PersistentTier

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from tempo.config import CacheConfig
    from tempo.models import AnalysisContext, AnalysisResult
    from tempo.observability.metrics import TempoMetrics

logger = logging.getLogger(__name__)


class CacheTier(str, Enum):
    """Tier that answered a lookup."""

    MEMORY = "memory"
    PERSISTENT = "persistent"
    SIMILAR = "similar"


@dataclass(frozen=True)
class CacheLookup:
    """Cache hit with its tier."""

    result: AnalysisResult
    tier: CacheTier
    entry: CacheEntry

    @property
    def exact(self) -> bool:
        return self.tier != CacheTier.SIMILAR


class MultiTierCache:
    """Analysis result cache keyed by context fingerprint."""

    def __init__(
        self,
        config: CacheConfig,
        persistent: PersistentTier | None = None,
        metrics: TempoMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            config: Cache configuration
            persistent: Persistent tier (one is created from the config if omitted)
            metrics: Optional Prometheus metrics
            clock: Source of the current epoch time
        """
        self.config = config
        self.fingerprinter = ContextFingerprinter(config)
        self.memory = MemoryTier(config.memory_max_entries)
        self.persistent = persistent or PersistentTier(config.persistent_path)
        self.metrics = metrics
        self._clock = clock
        self._key_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    async def initialize(self) -> None:
        await self.persistent.initialize()

    def fingerprint(self, context: AnalysisContext) -> ContextFingerprint:
        return self.fingerprinter.fingerprint(context)

    async def lookup(
        self, fingerprint: ContextFingerprint, similar: bool = True
    ) -> CacheLookup | None:
        """Look up a result through the tiers.

        Args:
            fingerprint: Fingerprint of the request
            similar: Also search for a similar context after the exact tiers

        Returns:
            Hit with its tier, or None on a miss
        """
        now = self._clock()

        entry = self.memory.get(fingerprint.digest, now)
        if entry is not None:
            return self._hit(fingerprint, entry, CacheTier.MEMORY)

        entry = await self.persistent.get(fingerprint.digest, now)
        if entry is not None:
            self.memory.put(entry)
            return self._hit(fingerprint, entry, CacheTier.PERSISTENT)

        if similar:
            entry = await self.persistent.find_similar(
                fingerprint, self.config.similar_battery_tolerance, now
            )
            if entry is not None:
                return self._hit(fingerprint, entry, CacheTier.SIMILAR)

        logger.debug(f"Cache miss for {fingerprint.short}")
        if self.metrics:
            self.metrics.record_cache_lookup(tier="none", outcome="miss")
        return None

    async def get(self, fingerprint: ContextFingerprint) -> AnalysisResult | None:
        """Get a cached result through all tiers (None on a miss)."""
        hit = await self.lookup(fingerprint)
        return hit.result if hit else None

    async def put(self, fingerprint: ContextFingerprint, result: AnalysisResult, ttl: float) -> None:
        """Store a result in both tiers.

        Args:
            fingerprint: Key of the result
            result: Result to store
            ttl: Time to live in seconds (<= 0 stores nothing)
        """
        if ttl <= 0:
            return

        entry = CacheEntry(fingerprint=fingerprint, result=result, created_at=self._clock(), ttl=ttl)
        async with self._key_lock(fingerprint.digest):
            await self.persistent.put(entry)
            self.memory.put(entry)
        logger.debug(f"Cached {result.source.value} result {fingerprint.short} for {ttl:.0f}s")

    def needs_invalidation(self, old: AnalysisContext, new: AnalysisContext) -> bool:
        """Whether a context change is large enough to drop the old family."""
        if old.user_id != new.user_id:
            return False
        battery_delta = abs(new.battery.current_level - old.battery.current_level)
        if battery_delta > self.config.invalidation_battery_delta:
            return True
        if old.tags != new.tags:
            return True
        return self.fingerprinter.environment_bucket(
            old.environment
        ) != self.fingerprinter.environment_bucket(new.environment)

    async def invalidate_on_delta(self, old: AnalysisContext, new: AnalysisContext) -> int:
        """Drop the old context's family when the context changed materially.

        Triggers: battery change beyond the threshold, a tag set change, or an
        environment bucket change.

        Args:
            old: Previous context of the user
            new: Incoming context

        Returns:
            Number of entries removed
        """
        if not self.needs_invalidation(old, new):
            return 0

        family = self.fingerprint(old).family
        removed = self.memory.remove_family(family)
        removed |= await self.persistent.remove_family(family)

        if removed:
            logger.info(
                f"Invalidated {len(removed)} cached analyses for {old.user_id} "
                f"(battery {old.battery.current_level:.0f} -> {new.battery.current_level:.0f})"
            )
        if self.metrics:
            self.metrics.record_invalidation(len(removed))
        return len(removed)

    async def purge_expired(self) -> int:
        """Remove expired entries from both tiers.

        Returns:
            Number of persistent entries removed
        """
        now = self._clock()
        self.memory.purge_expired(now)
        return await self.persistent.purge_expired(now)

    async def clear(self) -> None:
        self.memory.clear()
        await self.persistent.clear()

    async def close(self) -> None:
        self.memory.clear()
        await self.persistent.close()

    def _hit(self, fingerprint: ContextFingerprint, entry: CacheEntry, tier: CacheTier) -> CacheLookup:
        outcome = "exact" if tier != CacheTier.SIMILAR else "adapted"
        logger.debug(f"Cache {outcome} hit for {fingerprint.short} ({tier.value})")
        if self.metrics:
            self.metrics.record_cache_lookup(tier=tier.value, outcome=outcome)
        return CacheLookup(result=entry.result, tier=tier, entry=entry)

    @contextlib.asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        lock, holders = self._key_locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._key_locks[key] = (lock, holders + 1)
        try:
            async with lock:
                yield
        finally:
            lock, holders = self._key_locks[key]
            if holders <= 1:
                del self._key_locks[key]
            else:
                self._key_locks[key] = (lock, holders - 1)
