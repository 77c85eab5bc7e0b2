"""Cache-then-network fetching with per-key request de-duplication.

``FetchCoordinator.fetch`` is the single entry point for cached reads. A
fresh cache hit returns without touching the loader. On a miss, the first
caller starts one task that runs the loader and populates the cache; every
concurrent caller for the same key awaits that task instead of issuing its
own backend call. Failures propagate unchanged and are never cached.

All bookkeeping runs on the event loop thread, so the in-flight map needs no
lock; the cache does its own locking.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from reeldata.operations import operations_depending_on

if TYPE_CHECKING:
    from datetime import timedelta

    from reeldata.keys import CacheKey
    from reeldata.operations import Entity, Operation
    from reeldata.protocols import CacheProtocol

log = structlog.get_logger()

T = TypeVar("T")


class FetchCoordinator:
    """Owns the in-flight map and mediates every read of the response cache."""

    def __init__(self, cache: CacheProtocol) -> None:
        self._cache = cache
        self._in_flight: dict[CacheKey[Any], asyncio.Task[Any]] = {}

    @property
    def cache(self) -> CacheProtocol:
        return self._cache

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def fetch(
        self,
        key: CacheKey[T],
        ttl: timedelta,
        loader: Callable[[], Awaitable[T]],
        *,
        tags: frozenset[Entity] = frozenset(),
    ) -> T:
        """Return the cached payload for ``key`` or load, cache and return it."""
        cached = self._cache.get(key)
        if cached is not None:
            log.debug("cache_hit", key=str(key))
            return cached

        task = self._in_flight.get(key)
        # A finished task lingers until its done-callback runs; never reuse it.
        if task is None or task.done():
            log.debug("cache_miss_fetching", key=str(key))
            task = asyncio.ensure_future(self._load(key, ttl, loader, tags))
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        else:
            log.debug("fetch_joined_in_flight", key=str(key))

        # Shielded so one waiter giving up does not cancel the shared load.
        return await asyncio.shield(task)

    async def _load(
        self,
        key: CacheKey[T],
        ttl: timedelta,
        loader: Callable[[], Awaitable[T]],
        tags: frozenset[Entity],
    ) -> T:
        payload = await loader()
        # Invalidation while loading removes us from the map; the result is
        # still handed to current waiters but must not repopulate the cache.
        if self._in_flight.get(key) is asyncio.current_task():
            self._cache.put(key, payload, ttl, tags=tags)
        else:
            log.info("fetch_result_superseded", key=str(key))
        return payload

    def _forget(self, key: CacheKey[Any], done: asyncio.Task[Any]) -> None:
        if self._in_flight.get(key) is done:
            del self._in_flight[key]
        # Nobody may be awaiting anymore; retrieve the error so asyncio does
        # not log it as "never retrieved".
        if not done.cancelled():
            done.exception()

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, keys: Iterable[CacheKey[Any]]) -> int:
        keys = list(keys)
        for key in keys:
            self._in_flight.pop(key, None)
        removed = self._cache.invalidate(keys)
        log.info("cache_invalidated", scope="keys", keys=len(keys), removed=removed)
        return removed

    def invalidate_operation(self, operation: Operation | str) -> int:
        for key in [k for k in self._in_flight if k.operation == operation]:
            del self._in_flight[key]
        removed = self._cache.invalidate_operation(str(operation))
        log.info("cache_invalidated", scope="operation", operation=str(operation), removed=removed)
        return removed

    def invalidate_entities(self, entities: Iterable[Entity]) -> int:
        """Drop everything derived from the given entity kinds, e.g. after a write."""
        entities = frozenset(entities)
        affected = {str(op) for op in operations_depending_on(entities)}
        for key in [k for k in self._in_flight if k.operation in affected]:
            del self._in_flight[key]
        removed = self._cache.invalidate_tagged(entities)
        log.info(
            "cache_invalidated",
            scope="entities",
            entities=sorted(str(e) for e in entities),
            removed=removed,
        )
        return removed

    def clear(self) -> int:
        """Drop every cached aggregate. Used after bulk writes such as imports."""
        self._in_flight.clear()
        removed = self._cache.clear()
        log.info("cache_invalidated", scope="all", removed=removed)
        return removed
