"""Bounded in-memory cache with TTL, LRU-K and priority-weighted eviction.

Entries expire a fixed time after they were last written. When the cache is
full (or past its proactive eviction threshold) the entry with the lowest
eviction score is dropped, where the score is the time of its K-th most
recent access, pushed earlier for low-priority entries.

Usage:
    cache = AdaptiveCache(max_size=200, ttl=180)
    cache.set("a.thrift", type_map)
    hit = cache.get("a.thrift")
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

# Seconds an entry with priority 0 is pushed back in eviction order.
PRIORITY_WEIGHT = 60.0
DEFAULT_PRIORITY = 1.0
DEFAULT_SIZE = 1


@dataclass(slots=True)
class _Entry(Generic[V]):
    value: V
    written_at: float
    size: int
    history: List[float] = field(default_factory=list)


class AdaptiveCache(Generic[K, V]):
    """Generic key/value store; see the module docstring for eviction rules.

    Attributes:
        max_size: Maximum number of entries. Zero disables storage.
        ttl: Seconds after the last write at which an entry expires.
        lru_k: Number of access timestamps kept per entry.
        eviction_threshold: Fraction of ``max_size`` at which eviction starts.
    """

    def __init__(
        self,
        max_size: int,
        ttl: float,
        lru_k: int = 2,
        eviction_threshold: float = 0.8,
        priority_fn: Optional[Callable[[K, V], float]] = None,
        size_estimator: Optional[Callable[[V], int]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max(0, max_size)
        self.ttl = ttl
        self.lru_k = max(1, lru_k)
        self.eviction_threshold = min(1.0, max(0.0, eviction_threshold))
        self._priority_fn = priority_fn
        self._size_estimator = size_estimator
        self._clock = clock
        self._entries: Dict[K, _Entry[V]] = {}
        self._total_size = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        now = self._clock()
        if self._is_expired(entry, now):
            self._remove(key)
            self._misses += 1
            return None
        self._record_access(entry, now)
        self._hits += 1
        return entry.value

    def set(self, key: K, value: V) -> None:
        if key in self._entries:
            self._remove(key)
        if self.max_size == 0:
            return
        now = self._clock()
        self._prune_expired(now)
        limit = self._eviction_limit()
        while self._entries and len(self._entries) >= limit:
            self._evict_one(now)

        entry = _Entry(value=value, written_at=now, size=self._estimate_size(value))
        self._record_access(entry, now)
        self._entries[key] = entry
        self._total_size += entry.size

    def delete(self, key: K) -> bool:
        return self._remove(key)

    def clear(self) -> None:
        self._entries.clear()
        self._total_size = 0

    def size(self) -> int:
        return len(self._entries)

    def keys(self) -> List[K]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not self._is_expired(entry, self._clock())

    def __len__(self) -> int:
        return len(self._entries)

    def estimated_memory_usage(self) -> int:
        return self._total_size

    def stats(self) -> Dict[str, Any]:
        """Hit/miss/eviction counters plus current occupancy."""
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total > 0 else 0.0,
            "evictions": self._evictions,
            "size": len(self._entries),
            "max_size": self.max_size,
            "estimated_size": self._total_size,
        }

    def _eviction_limit(self) -> int:
        proactive = math.ceil(self.max_size * self.eviction_threshold)
        return max(1, min(self.max_size, proactive))

    def _is_expired(self, entry: _Entry[V], now: float) -> bool:
        return now - entry.written_at >= self.ttl

    def _record_access(self, entry: _Entry[V], now: float) -> None:
        entry.history.append(now)
        if len(entry.history) > self.lru_k:
            del entry.history[: len(entry.history) - self.lru_k]

    def _remove(self, key: K) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._total_size -= entry.size
        return True

    def _prune_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            self._remove(key)
        if expired:
            logger.debug("Pruned %d expired cache entries", len(expired))

    def _evict_one(self, now: float) -> None:
        victim = min(self._entries, key=lambda key: self._eviction_rank(key, self._entries[key]))
        self._remove(victim)
        self._evictions += 1
        logger.debug("Evicted cache entry %r", victim)

    def _eviction_rank(self, key: K, entry: _Entry[V]) -> Tuple[float, float, int]:
        if len(entry.history) >= self.lru_k:
            kth_access = entry.history[-self.lru_k]
        else:
            kth_access = entry.written_at
        priority = self._priority(key, entry.value)
        score = kth_access - PRIORITY_WEIGHT * (1.0 - priority)
        return score, entry.history[-1], len(entry.history)

    def _priority(self, key: K, value: V) -> float:
        if self._priority_fn is None:
            return DEFAULT_PRIORITY
        try:
            return float(self._priority_fn(key, value))
        except Exception as exc:
            logger.debug("Cache priority function failed for %r: %s", key, exc)
            return DEFAULT_PRIORITY

    def _estimate_size(self, value: V) -> int:
        if self._size_estimator is None:
            return DEFAULT_SIZE
        try:
            return max(0, int(self._size_estimator(value)))
        except Exception as exc:
            logger.debug("Cache size estimator failed: %s", exc)
            return DEFAULT_SIZE
