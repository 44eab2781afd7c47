"""
Two-level cache store: promote on read, write-through on write.
"""
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .core import CacheEntry, CacheSize, CacheType
from .tiers import CacheTier

logger = logging.getLogger("cache.store")


class CacheStore:
    """
    Composes a fast memory tier and a durable persistent tier into one store.

    - get(): memory first, then persistent; persistent hits are copied into memory
    - set(): written to both tiers before returning
    - delete(): removed from both tiers
    """

    def __init__(self, memory: CacheTier, persistent: CacheTier):
        self.memory = memory
        self.persistent = persistent

    def lookup(self, key: str) -> Optional[Tuple[CacheEntry, CacheType]]:
        """Get an entry together with the tier that served it."""
        entry = self.memory.get(key)
        if entry is not None:
            return entry, CacheType.MEMORY

        entry = self.persistent.get(key)
        if entry is not None:
            self.memory.set(key, entry)
            logger.debug(f"Promoted to memory tier: {key}")
            return entry, CacheType.PERSISTENT

        return None

    def get(self, key: str) -> Optional[CacheEntry]:
        found = self.lookup(key)
        return found[0] if found else None

    def set(self, key: str, entry: CacheEntry) -> None:
        self.memory.set(key, entry)
        self.persistent.set(key, entry)

    def delete(self, key: str) -> None:
        self.memory.delete(key)
        self.persistent.delete(key)

    def keys_matching(self, prefix: str) -> List[str]:
        """Keys in either tier equal to or starting with prefix."""
        keys = set(self.memory.keys_matching(prefix))
        keys.update(self.persistent.keys_matching(prefix))
        return sorted(keys)

    def mark_stale(self, key: str) -> bool:
        """Flag an entry as stale in every tier holding it, without deleting it."""
        marked = False
        for tier in (self.memory, self.persistent):
            entry = tier.get(key)
            if entry is not None:
                tier.set(key, replace(entry, marked_stale=True))
                marked = True
        return marked

    def approx_size(self) -> CacheSize:
        return self.memory.approx_size() + self.persistent.approx_size()

    def tier_entries(self) -> Dict[str, List[CacheEntry]]:
        return {
            self.memory.name: self.memory.entries(),
            self.persistent.name: self.persistent.entries(),
        }

    def clear(self) -> None:
        self.memory.clear()
        self.persistent.clear()
