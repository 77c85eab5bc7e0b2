"""The fixed table of backend aggregation operations.

Each operation maps to exactly one backend function. TTLs follow how often
the underlying rows change: anything a user edits from the app gets minutes,
data that only moves when a new diary entry is logged gets longer. The
``depends_on`` set names the tables whose mutation makes a cached result
stale, so writes can invalidate just the affected operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from reeldata.models.aggregates import (
    AggregateParams,
    FirstWatchDate,
    FirstWatchDatesParams,
    GoalList,
    GoalsParams,
    HomeScreenParams,
    HomeScreenSummary,
    ListItemsParams,
    ListItemStatus,
    ListSummary,
    MoviesPageParams,
    MovieSearchResult,
    MovieWithRewatchColor,
    MustWatchMapping,
    OwnerParams,
    SearchMoviesParams,
)

if TYPE_CHECKING:
    from pydantic import BaseModel

    from reeldata.config import CacheSettings


class Operation(StrEnum):
    LISTS_WITH_SUMMARY = "lists_with_summary"
    FIRST_OCCURRENCE_DATES = "first_occurrence_dates"
    GOALS_DATA = "goals_data"
    LIST_ITEMS_WITH_STATUS = "list_items_with_status"
    REVERSE_MAPPING = "reverse_mapping"
    HOME_SCREEN_DATA = "home_screen_data"
    MOVIES_PAGE = "movies_page"
    SEARCH_MOVIES = "search_movies"


class Entity(StrEnum):
    LIST = "list"
    LIST_ITEM = "list_item"
    DIARY = "diary"


@dataclass(frozen=True, slots=True)
class OperationSpec:
    function: str  # Backend RPC function name
    params_model: type[AggregateParams]
    row_model: type[BaseModel]
    ttl: timedelta
    depends_on: frozenset[Entity]
    paged: bool = False


_ALL = frozenset(Entity)

OPERATIONS: dict[Operation, OperationSpec] = {
    Operation.LISTS_WITH_SUMMARY: OperationSpec(
        function="get_lists_with_summary",
        params_model=OwnerParams,
        row_model=ListSummary,
        ttl=timedelta(minutes=5),
        depends_on=_ALL,
    ),
    Operation.FIRST_OCCURRENCE_DATES: OperationSpec(
        function="get_first_watch_dates",
        params_model=FirstWatchDatesParams,
        row_model=FirstWatchDate,
        ttl=timedelta(hours=1),
        depends_on=frozenset({Entity.DIARY}),
    ),
    Operation.GOALS_DATA: OperationSpec(
        function="get_goals_data",
        params_model=GoalsParams,
        row_model=GoalList,
        ttl=timedelta(minutes=5),
        depends_on=_ALL,
    ),
    Operation.LIST_ITEMS_WITH_STATUS: OperationSpec(
        function="get_list_items_with_watched",
        params_model=ListItemsParams,
        row_model=ListItemStatus,
        ttl=timedelta(minutes=5),
        depends_on=frozenset({Entity.LIST, Entity.LIST_ITEM, Entity.DIARY}),
    ),
    Operation.REVERSE_MAPPING: OperationSpec(
        function="get_must_watches_mapping",
        params_model=OwnerParams,
        row_model=MustWatchMapping,
        ttl=timedelta(minutes=10),
        depends_on=frozenset({Entity.LIST, Entity.LIST_ITEM}),
    ),
    Operation.HOME_SCREEN_DATA: OperationSpec(
        function="get_home_screen_data",
        params_model=HomeScreenParams,
        row_model=HomeScreenSummary,
        ttl=timedelta(minutes=5),
        depends_on=frozenset({Entity.DIARY}),
    ),
    Operation.MOVIES_PAGE: OperationSpec(
        function="get_movies_with_rewatch_colors",
        params_model=MoviesPageParams,
        row_model=MovieWithRewatchColor,
        ttl=timedelta(minutes=5),
        depends_on=frozenset({Entity.DIARY}),
        paged=True,
    ),
    Operation.SEARCH_MOVIES: OperationSpec(
        function="search_movies_paginated",
        params_model=SearchMoviesParams,
        row_model=MovieSearchResult,
        ttl=timedelta(minutes=5),
        depends_on=frozenset({Entity.DIARY}),
        paged=True,
    ),
}


def ttl_for(operation: Operation | str, settings: CacheSettings | None = None) -> timedelta:
    """Return the TTL for an operation, honouring configured overrides."""
    operation = Operation(operation)
    if settings is not None and operation.value in settings.ttl_overrides:
        return timedelta(seconds=settings.ttl_overrides[operation.value])
    return OPERATIONS[operation].ttl


def operations_depending_on(entities: frozenset[Entity]) -> frozenset[Operation]:
    return frozenset(op for op, spec in OPERATIONS.items() if spec.depends_on & entities)
