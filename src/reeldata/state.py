"""Application state container.

AppState is created once inside ``client.open_client`` and handed to the
``ReelDataClient`` facade. Tests build it directly with fakes in place of the
gateway or cache.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from reeldata.config import Settings
    from reeldata.coordinator import FetchCoordinator
    from reeldata.protocols import CacheProtocol, GatewayProtocol


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    cache: CacheProtocol
    gateway: GatewayProtocol
    coordinator: FetchCoordinator
    http_client: httpx.AsyncClient | None = None
