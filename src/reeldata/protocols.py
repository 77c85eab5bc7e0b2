"""Protocol interfaces for swappable components.

The coordinator and client reference these protocols, not the concrete
implementations, so tests can substitute lightweight fakes for the gateway
and the cache.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

if TYPE_CHECKING:
    from datetime import timedelta

    from pydantic import BaseModel

    from reeldata.keys import CacheKey
    from reeldata.models.aggregates import AggregateParams
    from reeldata.operations import Entity, Operation

T = TypeVar("T")


class CacheProtocol(Protocol):
    """Interface for the response cache."""

    def get(self, key: CacheKey[T]) -> T | None: ...

    def put(
        self,
        key: CacheKey[T],
        payload: T,
        ttl: timedelta,
        *,
        cost: int | None = None,
        tags: frozenset[Entity] = frozenset(),
    ) -> None: ...

    def invalidate(self, keys: Iterable[CacheKey[Any]]) -> int: ...

    def invalidate_operation(self, operation: str) -> int: ...

    def invalidate_tagged(self, entities: Iterable[Entity]) -> int: ...

    def clear(self) -> int: ...

    def purge_expired(self) -> int: ...


class GatewayProtocol(Protocol):
    """Interface for the backend aggregation gateway."""

    async def call(
        self, operation: Operation | str, params: AggregateParams
    ) -> list[BaseModel]: ...
