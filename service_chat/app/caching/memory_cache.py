"""
In-process TTL cache for chat API responses.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from shared.logging import get_logger


DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 300


@dataclass
class CacheEntry:
    """A cached value and the monotonic instant it stops being valid."""

    key: str
    value: Any
    expires_at: float
    tags: FrozenSet[str] = field(default_factory=frozenset)

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class MemoryCache:
    """
    Key/value store with per-entry TTL, bounded size and a tag index.

    All operations are synchronous; under asyncio no two of them interleave,
    so the store needs no locking. Expired entries behave as absent and are
    dropped lazily on read or eagerly by ``cleanup()``.

    Entries may be stored under one or more tags (for example
    ``user_sessions:u1``). The reverse index maps each tag to the keys stored
    under it so a family of keys can be invalidated without scanning the
    whole store.

    Every ``invalidate_tag`` or ``clear`` bumps a generation counter. A
    caller that snapshots the generations of its tags before a slow fetch
    can store the result with ``set_if_current``, which refuses the write
    if any of those tags was invalidated in the meantime.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        name: str = "memory",
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.name = name
        self._clock = clock
        self._store: Dict[str, CacheEntry] = {}
        self._tag_index: Dict[str, Set[str]] = {}
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self.logger = get_logger("chat.cache.memory")

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or ``None``."""
        entry = self._store.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            self._remove(key)
            return None

        return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> None:
        """Insert or overwrite ``key``; overwriting restarts its TTL window."""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds

        if key in self._store:
            self._remove(key)
        elif len(self._store) >= self.max_size:
            self._evict_oldest()

        entry = CacheEntry(
            key=key,
            value=value,
            expires_at=self._clock() + ttl,
            tags=frozenset(tags),
        )
        self._store[key] = entry
        for tag in entry.tags:
            self._tag_index.setdefault(tag, set()).add(key)

    def generation(self, tags: Iterable[str]) -> Tuple[int, Tuple[int, ...]]:
        """Snapshot of the invalidation generations of ``tags``."""
        return self._epoch, tuple(self._generations.get(tag, 0) for tag in tags)

    def set_if_current(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float],
        tags: Iterable[str],
        generation: Tuple[int, Tuple[int, ...]],
    ) -> bool:
        """Store ``value`` unless a tag was invalidated since ``generation`` was taken."""
        tags = tuple(tags)
        if self.generation(tags) != generation:
            return False
        self.set(key, value, ttl_seconds, tags=tags)
        return True

    def delete(self, key: str) -> bool:
        """Remove ``key`` if present. Missing keys are not an error."""
        if key not in self._store:
            return False
        self._remove(key)
        return True

    def delete_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""
        matched = [key for key in self._store if key.startswith(prefix)]
        for key in matched:
            self._remove(key)
        return len(matched)

    def invalidate_tag(self, tag: str) -> int:
        """Remove every entry stored under ``tag``."""
        self._generations[tag] = self._generations.get(tag, 0) + 1
        keys = self._tag_index.pop(tag, set())
        removed = 0
        for key in list(keys):
            if key in self._store:
                self._remove(key)
                removed += 1
        return removed

    def clear(self) -> None:
        """Remove all entries."""
        self._store.clear()
        self._tag_index.clear()
        # a new epoch makes every outstanding snapshot stale
        self._generations.clear()
        self._epoch += 1

    def cleanup(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)

        if len(self._generations) > self.max_size:
            # dropping counters is only safe together with a new epoch
            self._generations.clear()
            self._epoch += 1

        if expired:
            self.logger.debug("Expired cache entries removed", cache=self.name, removed=len(expired))
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """Live entry count, capacity and live keys. Diagnostics only."""
        now = self._clock()
        keys: List[str] = [key for key, entry in self._store.items() if not entry.is_expired(now)]
        return {
            "size": len(keys),
            "max_size": self.max_size,
            "keys": keys,
        }

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        entry = self._store.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    def _evict_oldest(self) -> None:
        # dicts keep insertion order; overwrites re-insert at the end
        oldest = next(iter(self._store))
        self._remove(oldest)
        self.logger.debug("Evicted oldest cache entry", cache=self.name, key=oldest)

    def _remove(self, key: str) -> None:
        entry = self._store.pop(key)
        for tag in entry.tags:
            tagged = self._tag_index.get(tag)
            if tagged is None:
                continue
            tagged.discard(key)
            if not tagged:
                del self._tag_index[tag]
