from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class PageState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One window of a collection, in server order."""

    items: Sequence[T]
    offset: int
    requested_limit: int

    @property
    def has_more(self) -> bool:
        # A full page suggests more rows may exist.
        return len(self.items) == self.requested_limit
