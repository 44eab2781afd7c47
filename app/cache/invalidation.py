"""
Write-invalidation with a per-key generation guard.

Every invalidation bumps the generation of the matching keys that have a
fetch in flight. A fetch captures the generation when it starts and may only
write its result back if the generation is unchanged, so a fetch that was
already in flight when its key was invalidated cannot resurrect
pre-mutation data. A fetch that starts after the invalidation began sends
its request after the mutation completed, so it needs no bump. Counters for
keys with nothing in flight are dropped, keeping the table bounded by the
number of concurrent fetches.
"""
import itertools
import threading
import logging
from typing import Callable, Dict, Iterable, List

from .core import CacheEntry
from .store import CacheStore

logger = logging.getLogger("cache.invalidation")


class GenerationTable:
    """
    key -> generation counter.

    Values come from one shared increasing sequence, so reset() can drop all
    counters while still guaranteeing that no key ever reports a generation
    it reported before the reset.
    """

    def __init__(self):
        self._sequence = itertools.count(1)
        self._generations: Dict[str, int] = {}
        self._floor = 0
        self._lock = threading.Lock()

    def current(self, key: str) -> int:
        with self._lock:
            return self._generations.get(key, self._floor)

    def bump(self, key: str) -> int:
        with self._lock:
            generation = next(self._sequence)
            self._generations[key] = generation
            return generation

    def retain(self, keys: Iterable[str]) -> None:
        """
        Drop counters for every key not in keys.

        A dropped key reports the floor again. That value is older than any
        counter, so a fetch holding a dropped counter still fails its check.
        """
        keep = set(keys)
        with self._lock:
            for key in [k for k in self._generations if k not in keep]:
                del self._generations[key]

    def reset(self) -> None:
        with self._lock:
            self._generations.clear()
            self._floor = next(self._sequence)

    def __len__(self) -> int:
        with self._lock:
            return len(self._generations)


class Invalidator:
    """
    Removes cached entries by key or key prefix from both tiers.

    Prefix matching is a plain string prefix: "/api/trades" also matches
    "/api/trades/stats" and "/api/tradesets". Pass a trailing "/" or "?"
    to narrow it.
    """

    def __init__(
        self,
        store: CacheStore,
        generations: GenerationTable,
        in_flight_keys: Callable[[], Iterable[str]] = lambda: (),
    ):
        self.store = store
        self.generations = generations
        self._in_flight_keys = in_flight_keys
        self._lock = threading.Lock()

    def invalidate(self, key_or_prefix: str) -> int:
        """
        Invalidate a key and every key it prefixes.

        Returns:
            Number of cached keys removed
        """
        with self._lock:
            cached = self.store.keys_matching(key_or_prefix)
            in_flight = set(self._in_flight_keys())
            self.generations.retain(in_flight)
            for key in in_flight:
                if key.startswith(key_or_prefix):
                    self.generations.bump(key)
            for key in cached:
                self.store.delete(key)

        if cached:
            logger.info(f"Invalidated {len(cached)} entries matching '{key_or_prefix}'")
        return len(cached)

    def write_if_current(self, key: str, generation: int, entry: CacheEntry) -> bool:
        """
        Store entry only if key's generation still equals generation.

        Runs under the invalidation lock so the check and the write cannot
        interleave with an invalidation.
        """
        with self._lock:
            current = self.generations.current(key)
            if current != generation:
                logger.warning(
                    f"Discarded late write for {key} (generation {generation} -> {current})"
                )
                return False
            self.store.set(key, entry)
            return True

    def mark_stale(self, key_or_prefix: str) -> List[str]:
        """Flag matching entries stale so their next read revalidates."""
        with self._lock:
            marked = [k for k in self.store.keys_matching(key_or_prefix) if self.store.mark_stale(k)]
        if marked:
            logger.info(f"Marked {len(marked)} entries stale matching '{key_or_prefix}'")
        return marked

    def clear_all(self) -> int:
        """Remove every entry and reset all generations."""
        with self._lock:
            count = self.store.approx_size().count
            self.generations.reset()
            self.store.clear()
        logger.info(f"Cleared cache ({count} tier entries)")
        return count
