"""Offset-based incremental loading with stale-result suppression.

Each ``PaginationController`` drives one collection through
``IDLE -> LOADING -> IDLE | EXHAUSTED | FAILED``. Every request takes a fresh
generation token; a result is applied only if its token is still current
when it arrives. ``refresh()`` bumps the token, so a page that was in flight
when the user pulled to refresh is dropped on arrival instead of being
appended to the new sequence.

Cancellation is cooperative: superseded loads run to completion and their
results are discarded, reported to the caller as ``None``. A load cancelled
by its own caller restores the state it started from, so the next
``load_next()`` issues a fresh request.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, TypeVar

import structlog

from reeldata.models.pagination import Page, PageState

log = structlog.get_logger()

T = TypeVar("T")

PageLoader = Callable[[int, int], Awaitable[Sequence[T]]]  # (offset, limit) -> items


class PaginationController(Generic[T]):
    """Accumulates pages of one collection in request order."""

    def __init__(self, load_page: PageLoader[T], *, page_size: int = 50, name: str = "") -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self._load_page = load_page
        self._page_size = page_size
        self._log = log.bind(collection=name) if name else log
        self._items: list[T] = []
        self._offset = 0
        self._token = 0
        self._state = PageState.IDLE
        self._error: BaseException | None = None

    @property
    def state(self) -> PageState:
        return self._state

    @property
    def items(self) -> Sequence[T]:
        return tuple(self._items)

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def token(self) -> int:
        return self._token

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def error(self) -> BaseException | None:
        return self._error

    async def load_next(self) -> Page[T] | None:
        """Load the page after the last applied one.

        Returns ``None`` without a request while a load is running or the
        collection is exhausted, and ``None`` when the result arrived after a
        newer request superseded it. Loader errors move the controller to
        ``FAILED`` and are re-raised.
        """
        if self._state in (PageState.LOADING, PageState.EXHAUSTED):
            return None
        return await self._request()

    async def refresh(self) -> Page[T] | None:
        """Restart from offset 0, discarding accumulated items and any page in flight."""
        self._items = []
        self._offset = 0
        self._error = None
        self._log.info("pagination_refresh", superseded_token=self._token)
        return await self._request()

    async def _request(self) -> Page[T] | None:
        self._token += 1
        token = self._token
        offset = self._offset
        limit = self._page_size
        self._state = PageState.LOADING

        try:
            items = await self._load_page(offset, limit)
        except asyncio.CancelledError:
            # The caller gave up; leave the controller ready for another load_next().
            if token == self._token:
                self._state = PageState.FAILED if self._error is not None else PageState.IDLE
                self._log.info("page_cancelled", token=token, offset=offset)
            raise
        except Exception as exc:
            if token != self._token:
                self._log.info("page_discarded", token=token, reason="superseded", error=True)
                return None
            self._state = PageState.FAILED
            self._error = exc
            self._log.warning("page_failed", token=token, offset=offset, error=str(exc))
            raise

        if token != self._token:
            self._log.info("page_discarded", token=token, reason="superseded")
            return None

        page = Page(items=tuple(items), offset=offset, requested_limit=limit)
        self._items.extend(page.items)
        self._offset += len(page.items)
        self._error = None
        self._state = PageState.IDLE if page.has_more else PageState.EXHAUSTED
        self._log.debug(
            "page_applied",
            token=token,
            offset=offset,
            received=len(page.items),
            state=str(self._state),
        )
        return page
