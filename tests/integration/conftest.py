"""Integration test fixtures.

Provides a fully wired client: real ResponseCache, FetchCoordinator and
AggregationGateway over a real httpx.AsyncClient whose requests are
intercepted by respx in each test.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest

from reeldata.client import ReelDataClient, build_state
from reeldata.config import Settings
from reeldata.gateway import build_http_client


@pytest.fixture()
async def client(settings: Settings) -> AsyncGenerator[ReelDataClient, None]:
    async with build_http_client(settings.backend) as http_client:
        yield ReelDataClient(build_state(settings, http_client))


@pytest.fixture()
def paged_backend(
    movie_rows: Callable[[int, int], list[dict[str, Any]]],
) -> Callable[[int], Callable[[httpx.Request], httpx.Response]]:
    """Build a respx side effect serving a catalogue of ``total`` movies by offset."""

    def _make(total: int) -> Callable[[httpx.Request], httpx.Response]:
        def _respond(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            offset, limit = body["offset_count"], body["limit_count"]
            count = max(0, min(limit, total - offset))
            return httpx.Response(200, json=movie_rows(offset, count))

        return _respond

    return _make
