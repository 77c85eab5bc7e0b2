"""End-to-end tests through ReelDataClient with a mocked backend."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
import respx

from reeldata.client import InvalidationScope, ReelDataClient, open_client
from reeldata.config import Settings
from reeldata.errors import ErrorCode, ReelDataError
from reeldata.models import ListSummary, PageState
from reeldata.operations import Entity, Operation

RPC = "https://db.example.test/rest/v1/rpc"

PagedBackend = Callable[[int], Callable[[httpx.Request], httpx.Response]]


# ---------------------------------------------------------------------------
# fetch_aggregate
# ---------------------------------------------------------------------------


class TestFetchAggregate:
    @respx.mock
    async def test_second_fetch_served_from_cache(
        self,
        client: ReelDataClient,
        owner_id: str,
        list_summary_row: Callable[..., dict[str, Any]],
    ) -> None:
        route = respx.post(f"{RPC}/get_lists_with_summary").mock(
            return_value=httpx.Response(200, json=[list_summary_row()])
        )
        params = {"user_id_param": owner_id}

        first = await client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, params)
        second = await client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, params)

        assert route.call_count == 1
        assert first == second
        assert isinstance(first[0], ListSummary)

    @respx.mock
    async def test_concurrent_fetches_share_one_request(
        self,
        client: ReelDataClient,
        owner_id: str,
        list_summary_row: Callable[..., dict[str, Any]],
    ) -> None:
        route = respx.post(f"{RPC}/get_lists_with_summary").mock(
            return_value=httpx.Response(200, json=[list_summary_row()])
        )
        params = {"user_id_param": owner_id}

        results = await asyncio.gather(
            *(client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, params) for _ in range(5))
        )

        assert route.call_count == 1
        assert all(result == results[0] for result in results)

    @respx.mock
    async def test_different_params_are_different_entries(self, client: ReelDataClient) -> None:
        route = respx.post(f"{RPC}/get_first_watch_dates").mock(
            return_value=httpx.Response(200, json=[])
        )
        await client.fetch_aggregate(Operation.FIRST_OCCURRENCE_DATES, {"tmdb_ids": [1, 2]})
        await client.fetch_aggregate(Operation.FIRST_OCCURRENCE_DATES, {"tmdb_ids": [2, 1, 1]})
        await client.fetch_aggregate(Operation.FIRST_OCCURRENCE_DATES, {"tmdb_ids": [3]})
        # [1, 2] and [2, 1, 1] name the same id set
        assert route.call_count == 2

    @respx.mock
    async def test_failure_is_not_cached(
        self,
        client: ReelDataClient,
        owner_id: str,
        list_summary_row: Callable[..., dict[str, Any]],
    ) -> None:
        route = respx.post(f"{RPC}/get_lists_with_summary").mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(200, json=[list_summary_row()]),
            ]
        )
        params = {"user_id_param": owner_id}

        with pytest.raises(ReelDataError) as exc_info:
            await client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, params)
        assert exc_info.value.code == ErrorCode.BACKEND_UNAVAILABLE

        rows = await client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, params)
        assert len(rows) == 1
        assert route.call_count == 2

    @respx.mock
    async def test_plain_string_operation(
        self,
        client: ReelDataClient,
        owner_id: str,
        list_summary_row: Callable[..., dict[str, Any]],
    ) -> None:
        route = respx.post(f"{RPC}/get_lists_with_summary").mock(
            return_value=httpx.Response(200, json=[list_summary_row()])
        )
        params = {"user_id_param": owner_id}
        await client.fetch_aggregate("lists_with_summary", params)
        await client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, params)
        assert route.call_count == 1
        assert client.record_mutation(Entity.LIST) == 1

    @respx.mock
    async def test_malformed_params_never_reach_backend(self, client: ReelDataClient) -> None:
        route = respx.post(f"{RPC}/get_goals_data")
        with pytest.raises(ReelDataError) as exc_info:
            await client.fetch_aggregate(Operation.GOALS_DATA, {"user_id_param": "nope"})
        assert exc_info.value.code == ErrorCode.BACKEND_REJECTED
        assert route.call_count == 0


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------


class TestInvalidation:
    @respx.mock
    async def test_key_scope_forces_refetch(
        self,
        client: ReelDataClient,
        owner_id: str,
        list_summary_row: Callable[..., dict[str, Any]],
    ) -> None:
        route = respx.post(f"{RPC}/get_lists_with_summary").mock(
            return_value=httpx.Response(200, json=[list_summary_row()])
        )
        params = {"user_id_param": owner_id}
        await client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, params)

        key = client.cache_key(Operation.LISTS_WITH_SUMMARY, params)
        assert client.invalidate(InvalidationScope.of_keys(key)) == 1

        await client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, params)
        assert route.call_count == 2

    @respx.mock
    async def test_operation_scope(self, client: ReelDataClient) -> None:
        route = respx.post(f"{RPC}/get_first_watch_dates").mock(
            return_value=httpx.Response(200, json=[])
        )
        await client.fetch_aggregate(Operation.FIRST_OCCURRENCE_DATES, {"tmdb_ids": [1]})
        await client.fetch_aggregate(Operation.FIRST_OCCURRENCE_DATES, {"tmdb_ids": [2]})

        removed = client.invalidate(InvalidationScope.of_operation(Operation.FIRST_OCCURRENCE_DATES))

        assert removed == 2
        await client.fetch_aggregate(Operation.FIRST_OCCURRENCE_DATES, {"tmdb_ids": [1]})
        assert route.call_count == 3

    @respx.mock
    async def test_diary_mutation_spares_unrelated_operations(
        self,
        client: ReelDataClient,
        owner_id: str,
        list_summary_row: Callable[..., dict[str, Any]],
    ) -> None:
        lists = respx.post(f"{RPC}/get_lists_with_summary").mock(
            return_value=httpx.Response(200, json=[list_summary_row()])
        )
        mapping = respx.post(f"{RPC}/get_must_watches_mapping").mock(
            return_value=httpx.Response(200, json=[{"tmdb_id": 603, "years": [2026]}])
        )
        params = {"user_id_param": owner_id}
        await client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, params)
        await client.fetch_aggregate(Operation.REVERSE_MAPPING, params)

        assert client.record_mutation(Entity.DIARY) == 1

        await client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, params)
        await client.fetch_aggregate(Operation.REVERSE_MAPPING, params)
        assert lists.call_count == 2
        assert mapping.call_count == 1

    @respx.mock
    async def test_everything_scope(
        self,
        client: ReelDataClient,
        owner_id: str,
        list_summary_row: Callable[..., dict[str, Any]],
    ) -> None:
        respx.post(f"{RPC}/get_lists_with_summary").mock(
            return_value=httpx.Response(200, json=[list_summary_row()])
        )
        respx.post(f"{RPC}/get_first_watch_dates").mock(return_value=httpx.Response(200, json=[]))
        await client.fetch_aggregate(Operation.LISTS_WITH_SUMMARY, {"user_id_param": owner_id})
        await client.fetch_aggregate(Operation.FIRST_OCCURRENCE_DATES, {"tmdb_ids": [1]})

        assert client.invalidate(InvalidationScope.everything()) == 2
        assert len(client.state.cache) == 0


# ---------------------------------------------------------------------------
# Paged collections
# ---------------------------------------------------------------------------


class TestCollections:
    @respx.mock
    async def test_loads_until_short_page(
        self, client: ReelDataClient, paged_backend: PagedBackend
    ) -> None:
        route = respx.post(f"{RPC}/get_movies_with_rewatch_colors").mock(
            side_effect=paged_backend(62)
        )
        handle = client.open_collection(Operation.MOVIES_PAGE, page_size=50)

        first = await client.load_next_page(handle)
        assert first is not None
        assert len(first.items) == 50
        assert handle.controller.state is PageState.IDLE

        second = await client.load_next_page(handle)
        assert second is not None
        assert len(second.items) == 12
        assert handle.controller.state is PageState.EXHAUSTED
        assert len(handle.controller.items) == 62

        assert await client.load_next_page(handle) is None
        assert route.call_count == 2
        offsets = [json.loads(call.request.content)["offset_count"] for call in route.calls]
        assert offsets == [0, 50]

    @respx.mock
    async def test_filters_are_sent_with_every_page(
        self, client: ReelDataClient, paged_backend: PagedBackend
    ) -> None:
        route = respx.post(f"{RPC}/get_movies_with_rewatch_colors").mock(
            side_effect=paged_backend(3)
        )
        handle = client.open_collection(
            Operation.MOVIES_PAGE,
            {"sort_column": "title", "sort_ascending": True},
            page_size=2,
        )
        await client.load_next_page(handle)
        await client.load_next_page(handle)

        bodies = [json.loads(call.request.content) for call in route.calls]
        assert all(body["sort_column"] == "title" for body in bodies)
        assert all(body["sort_ascending"] is True for body in bodies)

    @respx.mock
    async def test_forced_refresh_refetches(
        self, client: ReelDataClient, paged_backend: PagedBackend
    ) -> None:
        route = respx.post(f"{RPC}/get_movies_with_rewatch_colors").mock(
            side_effect=paged_backend(10)
        )
        handle = client.open_collection(Operation.MOVIES_PAGE, page_size=50)
        await client.load_next_page(handle)
        assert handle.controller.state is PageState.EXHAUSTED

        page = await client.refresh(handle)

        assert page is not None
        assert len(handle.controller.items) == 10
        assert route.call_count == 2

    @respx.mock
    async def test_unforced_refresh_uses_cache(
        self, client: ReelDataClient, paged_backend: PagedBackend
    ) -> None:
        route = respx.post(f"{RPC}/get_movies_with_rewatch_colors").mock(
            side_effect=paged_backend(10)
        )
        handle = client.open_collection(Operation.MOVIES_PAGE, page_size=50)
        await client.load_next_page(handle)

        await client.refresh(handle, force=False)

        assert len(handle.controller.items) == 10
        assert route.call_count == 1

    @respx.mock
    async def test_failed_page_can_be_retried(
        self,
        client: ReelDataClient,
        movie_rows: Callable[[int, int], list[dict[str, Any]]],
    ) -> None:
        respx.post(f"{RPC}/get_movies_with_rewatch_colors").mock(
            side_effect=[
                httpx.Response(200, json=movie_rows(0, 2)),
                httpx.ConnectError("Connection reset"),
                httpx.Response(200, json=movie_rows(2, 1)),
            ]
        )
        handle = client.open_collection(Operation.MOVIES_PAGE, page_size=2)
        await client.load_next_page(handle)

        with pytest.raises(ReelDataError):
            await client.load_next_page(handle)
        assert handle.controller.state is PageState.FAILED
        assert len(handle.controller.items) == 2

        page = await client.load_next_page(handle)
        assert page is not None
        assert page.offset == 2
        assert handle.controller.state is PageState.EXHAUSTED

    @respx.mock
    async def test_blank_search_is_exhausted_without_request(self, client: ReelDataClient) -> None:
        route = respx.post(f"{RPC}/search_movies_paginated")
        handle = client.open_collection(Operation.SEARCH_MOVIES, {"search_query": "  "})

        page = await client.load_next_page(handle)

        assert page is not None
        assert page.items == ()
        assert handle.controller.state is PageState.EXHAUSTED
        assert route.call_count == 0

    async def test_unpaged_operation_rejected(self, client: ReelDataClient) -> None:
        with pytest.raises(ValueError, match="not a paged operation"):
            client.open_collection(Operation.LISTS_WITH_SUMMARY)

    async def test_bad_filters_rejected_up_front(self, client: ReelDataClient) -> None:
        with pytest.raises(ReelDataError):
            client.open_collection(Operation.MOVIES_PAGE, {"sort_column": "runtime"})


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestOpenClient:
    @respx.mock
    async def test_lifecycle(self, settings: Settings, owner_id: str) -> None:
        respx.post(f"{RPC}/get_must_watches_mapping").mock(
            return_value=httpx.Response(200, json=[])
        )
        async with open_client(settings, configure_logs=False) as client:
            rows = await client.fetch_aggregate(
                Operation.REVERSE_MAPPING, {"user_id_param": owner_id}
            )
            assert rows == []
            http_client = client.state.http_client
            assert http_client is not None
            assert not http_client.is_closed

        assert http_client.is_closed

    async def test_sweep_task_cancelled_on_exit(self, settings: Settings) -> None:
        settings = settings.model_copy(
            update={"cache": settings.cache.model_copy(update={"sweep_interval_seconds": 60})}
        )
        before = len(asyncio.all_tasks())
        async with open_client(settings, configure_logs=False):
            assert len(asyncio.all_tasks()) == before + 1
        assert len(asyncio.all_tasks()) == before
