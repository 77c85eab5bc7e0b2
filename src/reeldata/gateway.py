"""HTTP gateway to the backend aggregation functions.

Every aggregation is one ``POST /rest/v1/rpc/<function>`` with the named
parameters as a JSON object, answered by a JSON array of rows. The gateway
validates parameters, makes that single call and decodes the rows into typed
models. It does no joining or classification of its own and never retries.

The gateway receives an ``httpx.AsyncClient`` via constructor injection; the
owner of the client (``client.open_client``) controls its lifecycle.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, cast

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from reeldata import __version__
from reeldata.config import BackendSettings
from reeldata.errors import ErrorCode, ReelDataError
from reeldata.operations import OPERATIONS, Operation

if TYPE_CHECKING:
    from uuid import UUID

    from reeldata.models.aggregates import (
        AggregateParams,
        FirstWatchDate,
        GoalList,
        HomeScreenSummary,
        ListItemStatus,
        ListSummary,
        MovieSearchResult,
        MovieWithRewatchColor,
        MustWatchMapping,
        SortColumn,
    )

log = structlog.get_logger()

RPC_PATH = "/rest/v1/rpc/"

# Proxy and gateway failures mean the database was never reached.
_UNAVAILABLE_STATUSES = frozenset({502, 503, 504})


def build_http_client(settings: BackendSettings | None = None) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    settings = settings or BackendSettings()
    headers = {
        "User-Agent": f"reeldata/{__version__}",
        "Accept": "application/json",
    }
    if settings.api_key:
        headers["apikey"] = settings.api_key
        headers["Authorization"] = f"Bearer {settings.api_key}"
    return httpx.AsyncClient(
        base_url=settings.url,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers=headers,
        limits=httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=max(1, settings.max_connections // 2),
        ),
    )


def validate_params(
    operation: Operation | str, params: Mapping[str, Any] | AggregateParams
) -> AggregateParams:
    """Coerce caller parameters into the operation's parameter model.

    Raises ReelDataError(BACKEND_REJECTED) on malformed input, before any
    network traffic.
    """
    operation = Operation(operation)
    model = OPERATIONS[operation].params_model
    if isinstance(params, model):
        return params
    if isinstance(params, BaseModel):
        params = params.model_dump()
    try:
        return model.model_validate(params)
    except ValidationError as exc:
        raise ReelDataError(
            code=ErrorCode.BACKEND_REJECTED,
            message=f"Invalid parameters for {operation}: {exc.error_count()} error(s): {exc}",
            suggestion=f"Check the parameters against {model.__name__}.",
            recoverable=False,
        ) from exc


def _first_per_tmdb_id(rows: list[BaseModel]) -> list[BaseModel]:
    seen: set[int] = set()
    unique: list[BaseModel] = []
    for row in rows:
        tmdb_id = cast("FirstWatchDate", row).tmdb_id
        if tmdb_id in seen:
            continue
        seen.add(tmdb_id)
        unique.append(row)
    return unique


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)[:200]
    return str(body)[:200]


class AggregationGateway:
    """Typed conduit to the backend's aggregation functions."""

    def __init__(self, client: httpx.AsyncClient, *, timeout_seconds: float = 15.0) -> None:
        self._client = client
        self._timeout = timeout_seconds

    async def call(self, operation: Operation | str, params: AggregateParams) -> list[BaseModel]:
        """Run one aggregation and return its decoded rows.

        An empty id set or blank search returns ``[]`` without a request.
        Raises ReelDataError with BACKEND_UNAVAILABLE, BACKEND_REJECTED or
        DECODE_FAILED.
        """
        operation = Operation(operation)
        spec = OPERATIONS[operation]
        params = validate_params(operation, params)
        if params.short_circuits():
            log.debug("rpc_short_circuit", operation=operation)
            return []

        data = await self._rpc(spec.function, params.wire_body())

        if not isinstance(data, list):
            raise ReelDataError(
                code=ErrorCode.DECODE_FAILED,
                message=f"{spec.function} returned {type(data).__name__}, expected a list of rows",
                suggestion="Check that the backend function is declared RETURNS TABLE.",
                recoverable=False,
            )
        try:
            rows = [spec.row_model.model_validate(row) for row in data]
        except ValidationError as exc:
            raise ReelDataError(
                code=ErrorCode.DECODE_FAILED,
                message=f"Unexpected row shape from {spec.function}: {exc}",
                suggestion="The backend function and client models may be out of sync.",
                recoverable=False,
            ) from exc

        if operation is Operation.FIRST_OCCURRENCE_DATES:
            rows = _first_per_tmdb_id(rows)
        return rows

    async def _rpc(self, function: str, body: dict[str, Any]) -> Any:
        try:
            response = await asyncio.wait_for(
                self._client.post(f"{RPC_PATH}{function}", json=body),
                timeout=self._timeout,
            )
        except TimeoutError as exc:
            raise ReelDataError(
                code=ErrorCode.BACKEND_UNAVAILABLE,
                message=f"Timed out after {self._timeout}s calling {function}",
                suggestion="The backend may be overloaded or unreachable. Try again later.",
                recoverable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise ReelDataError(
                code=ErrorCode.BACKEND_UNAVAILABLE,
                message=f"Network error calling {function}: {exc}",
                suggestion="Check the connection to the backend.",
                recoverable=True,
            ) from exc

        if response.status_code in _UNAVAILABLE_STATUSES:
            raise ReelDataError(
                code=ErrorCode.BACKEND_UNAVAILABLE,
                message=f"HTTP {response.status_code} calling {function}",
                suggestion="The backend may be temporarily unavailable. Try again later.",
                recoverable=True,
            )
        if not response.is_success:
            raise ReelDataError(
                code=ErrorCode.BACKEND_REJECTED,
                message=f"HTTP {response.status_code} calling {function}: {_error_detail(response)}",
                suggestion="The backend refused the request; check parameters and permissions.",
                recoverable=False,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ReelDataError(
                code=ErrorCode.DECODE_FAILED,
                message=f"Response from {function} is not valid JSON",
                suggestion="The backend function and client models may be out of sync.",
                recoverable=False,
            ) from exc

        log.info(
            "rpc_complete",
            function=function,
            status_code=response.status_code,
            rows=len(data) if isinstance(data, list) else None,
        )
        return data

    # ------------------------------------------------------------------
    # One method per aggregation contract
    # ------------------------------------------------------------------

    async def lists_with_summary(self, owner_id: UUID | str) -> list[ListSummary]:
        rows = await self.call(
            Operation.LISTS_WITH_SUMMARY,
            validate_params(Operation.LISTS_WITH_SUMMARY, {"user_id_param": owner_id}),
        )
        return cast("list[ListSummary]", rows)

    async def first_occurrence_dates(self, tmdb_ids: list[int]) -> list[FirstWatchDate]:
        rows = await self.call(
            Operation.FIRST_OCCURRENCE_DATES,
            validate_params(Operation.FIRST_OCCURRENCE_DATES, {"tmdb_ids": tmdb_ids}),
        )
        return cast("list[FirstWatchDate]", rows)

    async def goals_data(
        self, owner_id: UUID | str, target_year: int, target_month: int
    ) -> list[GoalList]:
        params = {
            "user_id_param": owner_id,
            "target_year": target_year,
            "current_month": target_month,
        }
        rows = await self.call(
            Operation.GOALS_DATA, validate_params(Operation.GOALS_DATA, params)
        )
        return cast("list[GoalList]", rows)

    async def list_items_with_status(self, list_id: UUID | str) -> list[ListItemStatus]:
        rows = await self.call(
            Operation.LIST_ITEMS_WITH_STATUS,
            validate_params(Operation.LIST_ITEMS_WITH_STATUS, {"list_id_param": list_id}),
        )
        return cast("list[ListItemStatus]", rows)

    async def reverse_mapping(self, owner_id: UUID | str) -> list[MustWatchMapping]:
        rows = await self.call(
            Operation.REVERSE_MAPPING,
            validate_params(Operation.REVERSE_MAPPING, {"user_id_param": owner_id}),
        )
        return cast("list[MustWatchMapping]", rows)

    async def home_screen_data(self, target_year: int, current_month: int) -> list[HomeScreenSummary]:
        params = {"target_year": target_year, "current_month": current_month}
        rows = await self.call(
            Operation.HOME_SCREEN_DATA, validate_params(Operation.HOME_SCREEN_DATA, params)
        )
        return cast("list[HomeScreenSummary]", rows)

    async def movies_page(
        self,
        limit: int,
        offset: int,
        sort_column: SortColumn = "created_at",
        ascending: bool = False,
    ) -> list[MovieWithRewatchColor]:
        params = {
            "limit_count": limit,
            "offset_count": offset,
            "sort_column": sort_column,
            "sort_ascending": ascending,
        }
        rows = await self.call(Operation.MOVIES_PAGE, validate_params(Operation.MOVIES_PAGE, params))
        return cast("list[MovieWithRewatchColor]", rows)

    async def search_movies(self, query: str, limit: int, offset: int) -> list[MovieSearchResult]:
        params = {"search_query": query, "limit_count": limit, "offset_count": offset}
        rows = await self.call(
            Operation.SEARCH_MOVIES, validate_params(Operation.SEARCH_MOVIES, params)
        )
        return cast("list[MovieSearchResult]", rows)
