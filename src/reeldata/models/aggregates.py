"""Parameter and row models for the backend aggregation functions.

Parameter models validate caller input before anything touches the network
and serialise to the JSON body of the RPC call. Row models decode one element
of the JSON array the backend returns; every derived field (counts, flags,
colours) is computed server-side and only type-checked here.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, NonNegativeInt, field_validator

# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


class AggregateParams(BaseModel):
    """Base class for RPC parameter records."""

    def short_circuits(self) -> bool:
        """True when the request is known to produce no rows without asking."""
        return False

    def wire_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class OwnerParams(AggregateParams):
    user_id_param: UUID


class FirstWatchDatesParams(AggregateParams):
    tmdb_ids: list[int]

    @field_validator("tmdb_ids")
    @classmethod
    def normalise_ids(cls, v: list[int]) -> list[int]:
        # Order and duplicates carry no meaning for a set lookup.
        return sorted(set(v))

    def short_circuits(self) -> bool:
        return not self.tmdb_ids


class GoalsParams(AggregateParams):
    user_id_param: UUID
    target_year: int = Field(ge=1, le=9999)
    current_month: int = Field(ge=1, le=12)


class ListItemsParams(AggregateParams):
    list_id_param: UUID


class HomeScreenParams(AggregateParams):
    target_year: int = Field(ge=1, le=9999)
    current_month: int = Field(ge=1, le=12)


SortColumn = Literal["created_at", "watched_date", "title", "rating", "release_year"]


class MoviesPageParams(AggregateParams):
    limit_count: int = Field(default=100, ge=1, le=1000)
    offset_count: int = Field(default=0, ge=0)
    sort_column: SortColumn = "created_at"
    sort_ascending: bool = False


class SearchMoviesParams(AggregateParams):
    search_query: str = Field(max_length=200)
    limit_count: int = Field(default=50, ge=1, le=1000)
    offset_count: int = Field(default=0, ge=0)

    @field_validator("search_query")
    @classmethod
    def strip_query(cls, v: str) -> str:
        return v.strip()

    def short_circuits(self) -> bool:
        return not self.search_query


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


class ListSummary(BaseModel):
    """One list with its counts and representative artwork."""

    id: UUID
    user_id: UUID
    name: str
    description: str | None = None
    created_at: datetime
    updated_at: datetime
    pinned: bool = False
    ranked: bool = False
    tags: str | None = None
    themed_month_date: date | None = None
    item_count: NonNegativeInt = 0
    watched_count: NonNegativeInt = 0
    # Artwork of the lowest sort_order item; null for an empty list
    first_item_poster_url: str | None = None
    first_item_backdrop_path: str | None = None


class FirstWatchDate(BaseModel):
    """Earliest non-rewatch diary entry for a movie."""

    tmdb_id: int
    first_watch_date: date | None = None
    first_watch_year: int | None = None


class GoalListType(StrEnum):
    MUST_WATCHES = "must_watches"
    LOOKING_FORWARD = "looking_forward"
    THEMED_MONTH = "themed_month"


class GoalItem(BaseModel):
    tmdb_id: int | None = None
    title: str | None = None
    poster_url: str | None = None
    is_watched: bool = False


class GoalList(BaseModel):
    """A goal list (must watches, looking forward, themed month) with its items."""

    list_type: GoalListType
    list_id: UUID
    list_name: str
    total_items: NonNegativeInt = 0
    watched_count: NonNegativeInt = 0
    items: list[GoalItem] = []

    @field_validator("items", mode="before")
    @classmethod
    def decode_items(cls, v: Any) -> Any:
        if v is None:
            return []
        # Some deployments hand JSONB columns back as text
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("items")
    @classmethod
    def drop_placeholder_items(cls, v: list[GoalItem]) -> list[GoalItem]:
        # A left join over an empty list aggregates one all-null object.
        return [item for item in v if item.tmdb_id is not None]


class ListItemStatus(BaseModel):
    """A list item joined with its most recent diary entry, if any."""

    id: int
    list_id: UUID
    tmdb_id: int
    movie_title: str
    movie_poster_url: str | None = None
    movie_backdrop_path: str | None = None
    movie_year: int | None = None
    movie_release_date: date | None = None
    added_at: datetime
    sort_order: int = 0
    is_watched: bool = False
    diary_entry_id: int | None = None
    rating: float | None = None
    ratings100: float | None = None


class MustWatchMapping(BaseModel):
    """Years whose must-watch lists contain a movie."""

    tmdb_id: int
    years: list[int] = []

    @field_validator("years")
    @classmethod
    def sort_years(cls, v: list[int]) -> list[int]:
        return sorted(set(v))

    def includes(self, year: int) -> bool:
        return year in self.years


class RecentMovie(BaseModel):
    id: int
    title: str
    poster_url: str | None = None
    rating: float | None = None
    watched_date: date | None = None
    tmdb_id: int | None = None


class HomeScreenSummary(BaseModel):
    """Recent diary entries plus the yearly dashboard figures."""

    recent_movies: list[RecentMovie] = []
    yearly_movies_count: NonNegativeInt = 0
    yearly_average_rating: float | None = None
    films_released_this_year: NonNegativeInt = 0
    top_genre: str | None = None
    top_director: str | None = None
    favorite_day: str | None = None

    @field_validator("recent_movies", mode="before")
    @classmethod
    def decode_recent(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return json.loads(v)
        return v


class RewatchColor(StrEnum):
    GREY = "grey"  # rewatch without a recorded first watch
    YELLOW = "yellow"  # rewatched in the same year as the first watch
    ORANGE = "orange"  # rewatched in a later year


class MovieWithRewatchColor(BaseModel):
    movie_data: dict[str, Any]
    rewatch_color: RewatchColor | None = None


class MovieSearchResult(BaseModel):
    id: int
    title: str
    director: str | None = None
    poster_url: str | None = None
    rating: float | None = None
    ratings100: float | None = None
    watched_date: date | None = None
    tmdb_id: int | None = None
    release_year: int | None = None
    genres: list[str] | None = None
    rewatch: str | None = None
    favorited: bool | None = None
    total_count: NonNegativeInt = 0  # matches across all pages
