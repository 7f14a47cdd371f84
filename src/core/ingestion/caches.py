"""
Fast-Path Caches

Bounded, process-local sets of cast hashes mirroring what the record store
already knows. None of them is authoritative: correctness only depends on the
guard's fallback to the store, so eviction affects hit rate, never results.

- processed: hashes known to be COMPLETED
- replied: hashes a reply/notification was already sent for
"""

import logging
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_CEILING = 10000


class EvictionPolicy(Protocol):
    """Chooses which hashes survive once a cache exceeds its ceiling."""

    def select(self, hashes: List[str], ceiling: int) -> List[str]:
        """Return the hashes to keep, oldest first."""
        ...


class KeepRecentHalf:
    """Once over the ceiling, keep only the most recently added half."""

    def select(self, hashes: List[str], ceiling: int) -> List[str]:
        if len(hashes) <= ceiling:
            return hashes
        return hashes[len(hashes) // 2:]


class HashCache(Protocol):
    def add(self, cast_hash: str) -> None: ...
    def discard(self, cast_hash: str) -> None: ...
    def __contains__(self, cast_hash: object) -> bool: ...
    def __len__(self) -> int: ...
    def clear(self) -> None: ...
    def evict(self) -> int: ...


class BoundedHashSet:
    """
    Insertion-ordered set of hashes with a pluggable eviction policy.

    Eviction only happens when evict() is called (by the cache janitor), so
    the set can briefly exceed its ceiling between cycles.
    """

    def __init__(self, ceiling: int = DEFAULT_CEILING, policy: Optional[EvictionPolicy] = None, name: str = "cache"):
        self.ceiling = ceiling
        self.policy = policy or KeepRecentHalf()
        self.name = name
        self._entries: Dict[str, None] = {}

    def add(self, cast_hash: str) -> None:
        # Re-adding moves the hash to the recent end.
        self._entries.pop(cast_hash, None)
        self._entries[cast_hash] = None

    def discard(self, cast_hash: str) -> None:
        self._entries.pop(cast_hash, None)

    def __contains__(self, cast_hash: object) -> bool:
        return cast_hash in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def evict(self) -> int:
        """Apply the eviction policy. Returns the number of hashes dropped."""
        before = len(self._entries)
        if before <= self.ceiling:
            return 0

        kept = self.policy.select(list(self._entries), self.ceiling)
        self._entries = dict.fromkeys(kept)
        evicted = before - len(self._entries)

        logger.info(f"{self.name} cache cleanup: reduced from {before} to {len(self._entries)} entries")
        return evicted


class FastPathCaches:
    """The processed and replied caches, injected into the guard and orchestrator."""

    def __init__(self, processed: Optional[HashCache] = None, replied: Optional[HashCache] = None, ceiling: int = DEFAULT_CEILING):
        self.processed = processed if processed is not None else BoundedHashSet(ceiling, name="processed")
        self.replied = replied if replied is not None else BoundedHashSet(ceiling, name="replied")

    def evict(self) -> Dict[str, int]:
        return {
            "processed": self.processed.evict(),
            "replied": self.replied.evict(),
        }

    def clear(self) -> None:
        """Drop everything, as a process restart would."""
        self.processed.clear()
        self.replied.clear()

    def sizes(self) -> Dict[str, int]:
        return {
            "processed": len(self.processed),
            "replied": len(self.replied),
        }
