"""Background scheduler coroutine for the cache expiry sweep."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from reeldata.protocols import CacheProtocol

log = structlog.get_logger()


async def run_cache_sweep_scheduler(cache: CacheProtocol, interval_seconds: int) -> None:
    """Purge expired cache entries every ``interval_seconds`` until cancelled.

    Reads already ignore expired entries; the sweep only returns their memory
    sooner. A failing sweep is logged and retried on the next tick.
    """
    if interval_seconds <= 0:
        return

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            cache.purge_expired()
        except Exception:
            log.warning("cache_sweep_error", exc_info=True)
