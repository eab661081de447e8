"""Application state container.

AppState is created once at startup (inside the Starlette lifespan) and
stored on ``app.state.app_state`` for the route handlers.

The edge app populates the edge fields, the search app the client fields:
  Edge:   edge_cache, proxy
  Client: loader, directory, default_trigger
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from unduck.config import Settings
    from unduck.directory import DirectoryModel
    from unduck.loader import DirectoryLoader
    from unduck.protocols import EdgeCacheProtocol
    from unduck.proxy import AssetSource, EdgeCacheProxy


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every route handler."""

    settings: Settings
    http_client: httpx.AsyncClient | None = None
    assets: AssetSource | None = None

    # Edge
    edge_cache: EdgeCacheProtocol | None = None
    proxy: EdgeCacheProxy | None = None

    # Client
    loader: DirectoryLoader | None = None
    # Replaced wholesale whenever the loader yields a different snapshot.
    directory: DirectoryModel | None = None
    # Read once at startup; not reloaded on refresh.
    default_trigger: str = "g"
