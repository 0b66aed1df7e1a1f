from __future__ import annotations

"""TTL-bounded cache for search results."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from codeindex.rag.types import SearchResult

logger = logging.getLogger(__name__)

FINGERPRINT_DIMENSIONS = 20


def embedding_fingerprint(embedding: Sequence[float], dimensions: int = FINGERPRINT_DIMENSIONS) -> str:
    """Summarize a query embedding by its leading dimensions rounded to 3 decimals."""
    return ",".join(f"{value:.3f}" for value in embedding[:dimensions])


@dataclass(frozen=True)
class CacheKey:
    scope_id: str
    query_fingerprint: str
    limit: int
    threshold: float

    @classmethod
    def for_query(
        cls,
        scope_id: str,
        embedding: Sequence[float],
        limit: int,
        threshold: float,
    ) -> CacheKey:
        return cls(
            scope_id=scope_id,
            query_fingerprint=embedding_fingerprint(embedding),
            limit=limit,
            threshold=threshold,
        )


@dataclass(frozen=True)
class CacheEntry:
    results: list[SearchResult]
    timestamp: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


@dataclass(frozen=True)
class CacheStats:
    total_entries: int
    expired_entries: int
    active_entries: int
    average_age: float
    max_entries: int
    utilization_percent: float

    @property
    def is_healthy(self) -> bool:
        expired_ratio = self.expired_entries / self.total_entries if self.total_entries else 0.0
        return self.utilization_percent < 90.0 and expired_ratio < 0.3


class SearchCache:
    """Thread-safe result cache with per-entry TTL and bounded size.

    When full, expired entries are purged first and then the single oldest
    entry is evicted before a new key is inserted.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max(1, max_entries)
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> list[SearchResult] | None:
        """Return cached results, dropping the entry if it has expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return list(entry.results)

    def set(self, key: CacheKey, results: list[SearchResult], ttl: float | None = None) -> None:
        with self._lock:
            if key not in self._entries:
                self._evict_if_needed()
            self._entries[key] = CacheEntry(
                results=list(results),
                timestamp=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl,
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def remove_expired(self) -> int:
        with self._lock:
            return self._remove_expired()

    def get_stats(self) -> CacheStats:
        with self._lock:
            now = self._clock()
            total = len(self._entries)
            expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
            average_age = sum(entry.age(now) for entry in self._entries.values()) / max(total, 1)
            return CacheStats(
                total_entries=total,
                expired_entries=expired,
                active_entries=total - expired,
                average_age=average_age,
                max_entries=self.max_entries,
                utilization_percent=total / self.max_entries * 100.0,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _remove_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict_if_needed(self) -> None:
        if len(self._entries) < self.max_entries:
            return
        removed = self._remove_expired()
        if len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda key: self._entries[key].timestamp)
            del self._entries[oldest]
            removed += 1
        logger.debug("search_cache_evicted", extra={"removed": removed, "size": len(self._entries)})
