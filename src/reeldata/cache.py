"""In-memory response cache with per-entry TTL and bounded size.

Entries live in shards, each guarded by its own ``threading.Lock``, so reads
and writes for different keys do not contend. Eviction, bulk invalidation,
``clear()`` and the expiry sweep take the global eviction lock and then every
shard lock in shard order; nothing else ever holds more than one lock.

Expiry is lazy: an entry past ``expires_at`` is dropped by the read that
finds it. ``purge_expired()`` is available for an active sweep (see
``schedulers.run_cache_sweep_scheduler``).

Recency is a global access tick taken from ``itertools.count``. Eviction
removes expired entries first, then the lowest tick, so the victim order is
fully determined by the sequence of ``get``/``put`` calls.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable, Iterable, Sized
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from reeldata.keys import CacheKey
from reeldata.models.cache import CacheEntry

if TYPE_CHECKING:
    from reeldata.operations import Entity

log = structlog.get_logger()

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def estimate_cost(payload: Any) -> int:
    """Approximate footprint of a payload: its row count, at least 1."""
    if isinstance(payload, Sized) and not isinstance(payload, (str, bytes)):
        return max(1, len(payload))
    return 1


class _Shard:
    __slots__ = ("lock", "entries", "cost")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[CacheKey, CacheEntry] = {}
        self.cost = 0

    def remove(self, key: CacheKey) -> CacheEntry | None:
        """Drop ``key``. Caller holds ``self.lock``."""
        entry = self.entries.pop(key, None)
        if entry is not None:
            self.cost -= entry.cost
        return entry


class ResponseCache:
    """Sharded, bounded, TTL-aware cache implementing CacheProtocol."""

    def __init__(
        self,
        *,
        max_entries: int = 512,
        max_cost: int = 50_000,
        shards: int = 16,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_entries < 1 or max_cost < 1 or shards < 1:
            raise ValueError("max_entries, max_cost and shards must all be positive")
        self._max_entries = max_entries
        self._max_cost = max_cost
        self._shards = [_Shard() for _ in range(shards)]
        self._clock = clock
        self._ticks = itertools.count(1)
        self._global_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Per-key operations
    # ------------------------------------------------------------------

    def _shard_for(self, key: CacheKey) -> _Shard:
        return self._shards[int(key.digest[:8], 16) % len(self._shards)]

    def get(self, key: CacheKey[T]) -> T | None:
        """Return the payload for ``key``, or ``None`` on a miss or expired entry."""
        shard = self._shard_for(key)
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                shard.remove(key)
                log.debug("cache_entry_expired", key=str(key))
                return None
            entry.last_access = next(self._ticks)
            return entry.payload

    def put(
        self,
        key: CacheKey[T],
        payload: T,
        ttl: timedelta,
        *,
        cost: int | None = None,
        tags: frozenset[Entity] = frozenset(),
    ) -> None:
        """Store ``payload`` under ``key`` for ``ttl``, replacing any previous entry."""
        entry_cost = estimate_cost(payload) if cost is None else max(1, cost)
        if entry_cost > self._max_cost:
            log.warning(
                "cache_entry_too_large", key=str(key), cost=entry_cost, max_cost=self._max_cost
            )
            self.invalidate([key])
            return

        entry = CacheEntry(
            key=key,
            payload=payload,
            expires_at=self._clock() + ttl,
            cost=entry_cost,
            tags=tags,
            last_access=next(self._ticks),
        )
        shard = self._shard_for(key)
        with shard.lock:
            shard.remove(key)
            shard.entries[key] = entry
            shard.cost += entry_cost

        if len(self) > self._max_entries or self.total_cost > self._max_cost:
            self._evict()

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, CacheKey):
            return False
        shard = self._shard_for(key)
        with shard.lock:
            entry = shard.entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def __len__(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)

    @property
    def total_cost(self) -> int:
        return sum(shard.cost for shard in self._shards)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, keys: Iterable[CacheKey]) -> int:
        """Remove the given keys. Returns the number of entries removed."""
        removed = 0
        for key in keys:
            shard = self._shard_for(key)
            with shard.lock:
                if shard.remove(key) is not None:
                    removed += 1
        return removed

    def invalidate_operation(self, operation: str) -> int:
        """Remove every entry cached for ``operation``."""
        return self._remove_where(lambda entry: entry.key.operation == operation)

    def invalidate_tagged(self, entities: Iterable[Entity]) -> int:
        """Remove every entry whose payload depends on any of ``entities``."""
        wanted = frozenset(entities)
        return self._remove_where(lambda entry: bool(entry.tags & wanted))

    def clear(self) -> int:
        return self._remove_where(lambda entry: True)

    def purge_expired(self) -> int:
        """Active sweep: drop every expired entry now."""
        now = self._clock()
        removed = self._remove_where(lambda entry: entry.is_expired(now))
        if removed:
            log.info("cache_sweep_complete", removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Bulk paths (global lock)
    # ------------------------------------------------------------------

    def _lock_all(self) -> _AllShardsLocked:
        return _AllShardsLocked(self._global_lock, self._shards)

    def _remove_where(self, predicate: Callable[[CacheEntry], bool]) -> int:
        removed = 0
        with self._lock_all():
            for shard in self._shards:
                for key in [k for k, e in shard.entries.items() if predicate(e)]:
                    shard.remove(key)
                    removed += 1
        return removed

    def _evict(self) -> None:
        now = self._clock()
        with self._lock_all():
            count = sum(len(shard.entries) for shard in self._shards)
            cost = sum(shard.cost for shard in self._shards)
            if count <= self._max_entries and cost <= self._max_cost:
                return

            # Expired entries first, then least recently used.
            candidates = sorted(
                (
                    (not entry.is_expired(now), entry.last_access, key.digest, key, shard)
                    for shard in self._shards
                    for key, entry in shard.entries.items()
                ),
                key=lambda c: (c[0], c[1], c[2]),
            )
            evicted = 0
            for _, _, _, key, shard in candidates:
                if count <= self._max_entries and cost <= self._max_cost:
                    break
                entry = shard.remove(key)
                if entry is not None:
                    count -= 1
                    cost -= entry.cost
                    evicted += 1

        log.debug("cache_evicted", evicted=evicted, entries=count, cost=cost)


class _AllShardsLocked:
    """Context manager taking the global lock, then every shard lock in order."""

    def __init__(self, global_lock: threading.Lock, shards: list[_Shard]) -> None:
        self._global_lock = global_lock
        self._shards = shards

    def __enter__(self) -> None:
        self._global_lock.acquire()
        for shard in self._shards:
            shard.lock.acquire()

    def __exit__(self, *exc: object) -> None:
        for shard in reversed(self._shards):
            shard.lock.release()
        self._global_lock.release()
