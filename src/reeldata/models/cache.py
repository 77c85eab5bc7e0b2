from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from reeldata.keys import CacheKey
    from reeldata.operations import Entity

T = TypeVar("T")


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    """A cached aggregation result. Owned by ResponseCache."""

    key: CacheKey[T]
    payload: T
    expires_at: datetime
    cost: int = 1  # Approximate footprint, in result rows
    tags: frozenset[Entity] = field(default_factory=frozenset)  # Entity kinds the payload depends on
    last_access: int = 0  # Global access tick, drives LRU eviction

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
