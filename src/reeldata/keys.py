"""Deterministic cache keys.

A key is the operation name plus the SHA-256 of the canonical JSON encoding
of its parameters. Canonical means mapping keys sorted and unordered
collections (sets, frozensets) sorted, so the same logical request always
hashes the same way regardless of how the caller assembled it.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CacheKey(Generic[T]):
    """Identity of one cached result; ``T`` is the payload type stored under it."""

    operation: str
    digest: str

    def __str__(self) -> str:
        return f"{self.operation}:{self.digest[:16]}"


def _canonical(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return _canonical(value.model_dump(mode="json"))
    if isinstance(value, Mapping):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_canonical(v) for v in value), key=lambda v: json.dumps(v, sort_keys=True))
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, UUID):
        return str(value)
    return value


def make_cache_key(operation: str, params: Mapping[str, Any] | BaseModel | None = None) -> CacheKey:
    """Derive the cache key for ``operation`` called with ``params``."""
    payload = json.dumps(
        _canonical(params if params is not None else {}),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256(f"{operation}\n{payload}".encode()).hexdigest()
    return CacheKey(operation=str(operation), digest=digest)
