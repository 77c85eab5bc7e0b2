"""reeldata: one round trip per screen for movie-diary lists, goals and stats."""

from __future__ import annotations

import warnings
from importlib.metadata import PackageNotFoundError, version

_UNKNOWN_VERSION = "0.0.0+unknown"

try:
    __version__ = version("reeldata")
except PackageNotFoundError:
    # Checkout used without an install; the gateway's User-Agent still needs a value.
    warnings.warn(
        f"reeldata is not installed; reporting version {_UNKNOWN_VERSION!r}.",
        RuntimeWarning,
        stacklevel=2,
    )
    __version__ = _UNKNOWN_VERSION
