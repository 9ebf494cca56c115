"""Multi-tier analysis cache."""

from tempo.cache.fingerprint import ContextFingerprint, ContextFingerprinter
from tempo.cache.memory_tier import CacheEntry, MemoryTier
from tempo.cache.multi_tier import CacheLookup, CacheTier, MultiTierCache
from tempo.cache.persistent_tier import PersistentTier

__all__ = [
    "CacheEntry",
    "CacheLookup",
    "CacheTier",
    "ContextFingerprint",
    "ContextFingerprinter",
    "MemoryTier",
    "MultiTierCache",
    "PersistentTier",
]
