"""
Caching primitives for a generation session.

This module provides a bounded, thread-safe LRU cache with optional
time-to-live expiry, the rule-evaluation cache built on it, and the record
fingerprint used to key evaluation outcomes. Caches are plain objects owned by
a session; nothing here is module-global.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable, Iterable, Mapping
from datetime import datetime
from threading import Lock
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from .records import lookup_field

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


class CacheStats(BaseModel):
    """Counters describing cache effectiveness."""

    size: int = 0
    max_size: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    created: datetime = Field(default_factory=datetime.now)

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class LRUCache(Generic[K, V]):
    """
    Bounded least-recently-used cache with optional time-to-live.

    All operations take an internal lock, so one instance may be shared by
    worker threads. `get_or_compute` runs the compute function outside the
    lock: two threads missing the same key both compute and the later write
    wins, which is harmless for pure computations.
    """

    def __init__(
        self,
        max_size: int = 1024,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of entries kept
            ttl_seconds: Entry lifetime; None disables expiry
            clock: Monotonic time source, injectable for tests
        """
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[K, tuple[V, float]] = OrderedDict()
        self._lock = Lock()
        self._stats = CacheStats(max_size=max_size)

    def get(self, key: K, default: Any = None) -> V | Any:
        """Return the cached value for `key`, or `default` on a miss."""
        with self._lock:
            value = self._lookup(key)
            if value is _MISSING:
                self._stats.misses += 1
                return default
            self._stats.hits += 1
            return value

    def set(self, key: K, value: V) -> None:
        """Store `value`, evicting the least recently used entry when full."""
        with self._lock:
            self._store(key, value)

    def get_or_compute(self, key: K, compute: Callable[[], V]) -> tuple[V, bool]:
        """
        Return the cached value for `key`, computing and storing it on a miss.

        Returns:
            Tuple of (value, cache_hit)
        """
        with self._lock:
            value = self._lookup(key)
            if value is not _MISSING:
                self._stats.hits += 1
                return value, True
            self._stats.misses += 1

        value = compute()

        with self._lock:
            self._store(key, value)
        return value, False

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return self._lookup(key, touch=False) is not _MISSING

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        """Drop every entry; counters are kept."""
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        """Snapshot of the cache counters."""
        with self._lock:
            snapshot = self._stats.model_copy()
            snapshot.size = len(self._entries)
            return snapshot

    def _lookup(self, key: Any, touch: bool = True) -> V | Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING

        value, stored_at = entry
        if self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            self._stats.expirations += 1
            return _MISSING

        if touch:
            self._entries.move_to_end(key)
        return value

    def _store(self, key: K, value: V) -> None:
        self._entries[key] = (value, self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self._stats.evictions += 1


def record_fingerprint(record: Mapping[str, Any], fields: Iterable[str]) -> str:
    """
    Fingerprint the values of the fields a rule reads.

    Only the relevant fields participate, so a change to any other field still
    hits the cache while a change to a relevant one misses.

    Args:
        record: Candidate record
        fields: Field names referenced by the rule

    Returns:
        Hex digest of the relevant field values
    """
    relevant = {}
    for name in sorted(set(fields)):
        value = lookup_field(record, name)
        relevant[name] = [type(value).__name__, value]

    payload = json.dumps(relevant, sort_keys=True, default=str)
    return hashlib.blake2b(payload.encode("utf-8"), digest_size=16).hexdigest()


class EvaluationCache(LRUCache[tuple[str, str, str], bool]):
    """Cache of rule outcomes keyed by (rule id, formula digest, relevant-field fingerprint)."""

    def __init__(
        self,
        max_size: int = 10000,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(max_size=max_size, ttl_seconds=ttl_seconds, clock=clock)

    @staticmethod
    def make_key(
        rule_id: str,
        record: Mapping[str, Any],
        fields: Iterable[str],
        formula: str = "",
        context: Any = None,
    ) -> tuple[str, str, str]:
        """
        Build the cache key for one rule against one record.

        Args:
            rule_id: Rule identifier
            record: Candidate record
            fields: Field names referenced by the rule
            formula: Formula text; a redefined rule under the same id gets new keys
            context: Anything else the outcome depends on, such as the declared
                types of the referenced fields or the evaluation date
        """
        payload = json.dumps([formula, context], sort_keys=True, default=str)
        formula_digest = hashlib.blake2b(payload.encode("utf-8"), digest_size=16).hexdigest()
        return rule_id, formula_digest, record_fingerprint(record, fields)
