from __future__ import annotations

from reeldata.models.aggregates import (
    AggregateParams,
    FirstWatchDate,
    FirstWatchDatesParams,
    GoalItem,
    GoalList,
    GoalListType,
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
    RecentMovie,
    RewatchColor,
    SearchMoviesParams,
)
from reeldata.models.cache import CacheEntry
from reeldata.models.pagination import Page, PageState

__all__ = [
    # parameters
    "AggregateParams",
    "OwnerParams",
    "FirstWatchDatesParams",
    "GoalsParams",
    "ListItemsParams",
    "HomeScreenParams",
    "MoviesPageParams",
    "SearchMoviesParams",
    # rows
    "ListSummary",
    "FirstWatchDate",
    "GoalListType",
    "GoalItem",
    "GoalList",
    "ListItemStatus",
    "MustWatchMapping",
    "RecentMovie",
    "HomeScreenSummary",
    "RewatchColor",
    "MovieWithRewatchColor",
    "MovieSearchResult",
    # cache
    "CacheEntry",
    # pagination
    "Page",
    "PageState",
]
