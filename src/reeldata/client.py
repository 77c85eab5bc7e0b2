"""Caller-facing facade.

Responsibilities (and nothing more):
- Configure structlog
- Build and tear down the shared components via ``open_client``
- Expose ``fetch_aggregate``, ``load_next_page`` and ``invalidate``
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Mapping
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from reeldata import __version__
from reeldata.cache import ResponseCache
from reeldata.config import Settings
from reeldata.coordinator import FetchCoordinator
from reeldata.gateway import AggregationGateway, build_http_client, validate_params
from reeldata.keys import CacheKey, make_cache_key
from reeldata.operations import OPERATIONS, Entity, Operation, ttl_for
from reeldata.pagination import PaginationController
from reeldata.schedulers import run_cache_sweep_scheduler
from reeldata.state import AppState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import httpx
    from pydantic import BaseModel

    from reeldata.models.aggregates import AggregateParams
    from reeldata.models.pagination import Page

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(settings: Settings) -> None:
    """Send reeldata's structlog events to stderr at the configured level.

    Applications that configure structlog themselves should open the client
    with ``configure_logs=False`` instead.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if settings.logging.format == "json":
        # cache_sweep_error carries exc_info; keep the traceback as data.
        processors.append(structlog.processors.dict_tracebacks)
    processors.append(_renderer(settings.logging.format))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[settings.logging.level]
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Scopes and handles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvalidationScope:
    """What to drop from the cache after a mutation."""

    keys: frozenset[CacheKey[Any]] = frozenset()
    operation: Operation | None = None
    entities: frozenset[Entity] = frozenset()
    clear_all: bool = False

    @classmethod
    def of_keys(cls, *keys: CacheKey[Any]) -> InvalidationScope:
        return cls(keys=frozenset(keys))

    @classmethod
    def of_operation(cls, operation: Operation) -> InvalidationScope:
        return cls(operation=operation)

    @classmethod
    def of_entities(cls, *entities: Entity) -> InvalidationScope:
        return cls(entities=frozenset(entities))

    @classmethod
    def everything(cls) -> InvalidationScope:
        return cls(clear_all=True)


@dataclass
class CollectionHandle:
    """A paged collection opened with ``ReelDataClient.open_collection``."""

    operation: Operation
    params: dict[str, Any]
    controller: PaginationController[BaseModel]
    # Keys of every page fetched through this handle, for forced refreshes
    keys: set[CacheKey[Any]] = field(default_factory=set)


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


class ReelDataClient:
    def __init__(self, state: AppState) -> None:
        self._state = state

    @property
    def state(self) -> AppState:
        return self._state

    def cache_key(
        self, operation: Operation | str, params: Mapping[str, Any] | AggregateParams
    ) -> CacheKey[list[BaseModel]]:
        return make_cache_key(operation, validate_params(operation, params))

    async def fetch_aggregate(
        self, operation: Operation | str, params: Mapping[str, Any] | AggregateParams
    ) -> list[BaseModel]:
        """Return the rows of one aggregation, from cache when fresh."""
        operation = Operation(operation)
        validated = validate_params(operation, params)
        key: CacheKey[list[BaseModel]] = make_cache_key(operation, validated)
        spec = OPERATIONS[operation]
        return await self._state.coordinator.fetch(
            key,
            ttl_for(operation, self._state.settings.cache),
            lambda: self._state.gateway.call(operation, validated),
            tags=spec.depends_on,
        )

    def open_collection(
        self,
        operation: Operation | str,
        params: Mapping[str, Any] | None = None,
        *,
        page_size: int | None = None,
    ) -> CollectionHandle:
        """Start incremental loading of a paged operation. No request is made yet."""
        operation = Operation(operation)
        if not OPERATIONS[operation].paged:
            raise ValueError(f"{operation} is not a paged operation")
        size = page_size or self._state.settings.pagination.page_size
        base = dict(params or {})
        # Fail fast on bad filters rather than on the first page load.
        validate_params(operation, {**base, "limit_count": size, "offset_count": 0})

        keys: set[CacheKey[Any]] = set()

        async def load_page(offset: int, limit: int) -> list[BaseModel]:
            page_params = {**base, "limit_count": limit, "offset_count": offset}
            keys.add(self.cache_key(operation, page_params))
            return await self.fetch_aggregate(operation, page_params)

        controller: PaginationController[BaseModel] = PaginationController(
            load_page, page_size=size, name=str(operation)
        )
        return CollectionHandle(operation=operation, params=base, controller=controller, keys=keys)

    async def load_next_page(self, handle: CollectionHandle) -> Page[BaseModel] | None:
        return await handle.controller.load_next()

    async def refresh(self, handle: CollectionHandle, *, force: bool = True) -> Page[BaseModel] | None:
        """Restart a collection from the first page.

        With ``force`` the pages previously fetched through this handle are
        dropped from the cache first, so the reload goes to the backend.
        """
        if force and handle.keys:
            self._state.coordinator.invalidate(handle.keys)
            handle.keys.clear()
        return await handle.controller.refresh()

    def invalidate(self, scope: InvalidationScope) -> int:
        """Drop cached aggregates made stale by a mutation. Returns entries removed."""
        coordinator = self._state.coordinator
        if scope.clear_all:
            return coordinator.clear()
        removed = 0
        if scope.keys:
            removed += coordinator.invalidate(scope.keys)
        if scope.operation is not None:
            removed += coordinator.invalidate_operation(scope.operation)
        if scope.entities:
            removed += coordinator.invalidate_entities(scope.entities)
        return removed

    def record_mutation(self, *entities: Entity) -> int:
        """Shorthand for ``invalidate(InvalidationScope.of_entities(...))``."""
        return self.invalidate(InvalidationScope.of_entities(*entities))


def build_state(settings: Settings, http_client: httpx.AsyncClient) -> AppState:
    cache = ResponseCache(
        max_entries=settings.cache.max_entries,
        max_cost=settings.cache.max_cost,
        shards=settings.cache.shards,
    )
    gateway = AggregationGateway(http_client, timeout_seconds=settings.backend.timeout_seconds)
    return AppState(
        settings=settings,
        cache=cache,
        gateway=gateway,
        coordinator=FetchCoordinator(cache),
        http_client=http_client,
    )


@asynccontextmanager
async def open_client(
    settings: Settings | None = None,
    *,
    configure_logs: bool = True,
) -> AsyncGenerator[ReelDataClient, None]:
    """Create and tear down all shared resources for the client's lifetime."""
    settings = settings or Settings()
    if configure_logs:
        configure_logging(settings)

    http_client = build_http_client(settings.backend)
    state = build_state(settings, http_client)
    sweep_task = asyncio.create_task(
        run_cache_sweep_scheduler(state.cache, settings.cache.sweep_interval_seconds)
    )

    log.info("client_started", version=__version__, backend=settings.backend.url)
    try:
        yield ReelDataClient(state)
    finally:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task
        await http_client.aclose()
        log.info("client_stopping")


