"""In-process LRU tier of the analysis cache."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass

from tempo.cache.fingerprint import ContextFingerprint
from tempo.models import AnalysisResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A cached analysis result.

    Attributes:
        fingerprint: Key of the entry
        result: Cached result
        created_at: Creation time (epoch seconds)
        ttl: Time to live in seconds
    """

    fingerprint: ContextFingerprint
    result: AnalysisResult
    created_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class MemoryTier:
    """Bounded LRU map of cache entries keyed by fingerprint digest."""

    def __init__(self, max_entries: int = 100) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, digest: object) -> bool:
        return digest in self._entries

    def get(self, digest: str, now: float) -> CacheEntry | None:
        """Get a live entry and mark it most recently used.

        Expired entries are dropped on access.
        """
        entry = self._entries.get(digest)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._entries[digest]
            return None
        self._entries.move_to_end(digest)
        return entry

    def put(self, entry: CacheEntry) -> None:
        """Insert or replace an entry, evicting the least recently used."""
        digest = entry.fingerprint.digest
        self._entries[digest] = entry
        self._entries.move_to_end(digest)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted LRU cache entry {evicted[:12]}")

    def remove(self, digest: str) -> bool:
        return self._entries.pop(digest, None) is not None

    def remove_family(self, family: str) -> set[str]:
        """Remove every entry of a fingerprint family.

        Returns:
            Digests of the removed entries
        """
        removed = {
            digest for digest, entry in self._entries.items() if entry.fingerprint.family == family
        }
        for digest in removed:
            del self._entries[digest]
        return removed

    def purge_expired(self, now: float) -> int:
        expired = [digest for digest, entry in self._entries.items() if entry.is_expired(now)]
        for digest in expired:
            del self._entries[digest]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
