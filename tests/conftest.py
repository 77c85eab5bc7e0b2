"""Shared test fixtures for the reeldata test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from reeldata.cache import ResponseCache
from reeldata.config import Settings

OWNER_ID = "6f1c2b7e-0a4d-4c1e-9a51-3b7f0e2d9c11"
LIST_ID = "0b9f6c1a-3d2e-4f5a-8b7c-9d0e1f2a3b4c"
BACKEND_URL = "https://db.example.test"


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock: FakeClock) -> ResponseCache:
    """Small cache so eviction is easy to trigger."""
    return ResponseCache(max_entries=8, max_cost=1_000, shards=4, clock=clock)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        backend={"url": BACKEND_URL, "api_key": "anon-key", "timeout_seconds": 2.0},
        cache={"sweep_interval_seconds": 0},
    )


@pytest.fixture()
def owner_id() -> str:
    return OWNER_ID


@pytest.fixture()
def list_id() -> str:
    return LIST_ID


@pytest.fixture()
def list_summary_row() -> Callable[..., dict[str, Any]]:
    """Factory for one get_lists_with_summary row."""

    def _make(**overrides: Any) -> dict[str, Any]:
        row: dict[str, Any] = {
            "id": LIST_ID,
            "user_id": OWNER_ID,
            "name": "Must Watches 2026",
            "description": None,
            "created_at": "2026-01-02T10:00:00+00:00",
            "updated_at": "2026-02-03T11:30:00+00:00",
            "pinned": True,
            "ranked": False,
            "tags": None,
            "themed_month_date": None,
            "item_count": 12,
            "watched_count": 5,
            "first_item_poster_url": "https://image.tmdb.org/t/p/w500/poster.jpg",
            "first_item_backdrop_path": "/backdrop.jpg",
        }
        row.update(overrides)
        return row

    return _make


@pytest.fixture()
def movie_rows() -> Callable[[int, int], list[dict[str, Any]]]:
    """Factory for ``count`` get_movies_with_rewatch_colors rows starting at ``start``."""

    def _make(start: int, count: int) -> list[dict[str, Any]]:
        return [
            {
                "movie_data": {"id": n, "title": f"Movie {n}", "tmdb_id": 1000 + n},
                "rewatch_color": "yellow" if n % 7 == 0 else None,
            }
            for n in range(start, start + count)
        ]

    return _make
