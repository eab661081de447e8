"""Integration test fixtures.

Wires the edge and search Starlette apps over in-memory SQLite and a scripted
upstream. Apps are driven through httpx.ASGITransport, so no sockets are
opened and no lifespan runs; AppState is assembled here instead.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx
import pytest
from starlette.applications import Starlette

from unduck.config import Settings
from unduck.loader import DirectoryLoader
from unduck.proxy import EDGE_ROUTES, AssetSource, EdgeCacheProxy
from unduck.search import SEARCH_ROUTES
from unduck.state import AppState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from unduck.edge_cache import EdgeCache
    from unduck.store import PersistentDirectoryCache

UPSTREAM_URL = "https://upstream.example/bang.js"
EDGE_URL = "http://edge.test/bangs.js"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

UPSTREAM_BODY = (
    "window.bangs = "
    + json.dumps(
        [
            {"t": "g", "d": "www.google.com", "u": "https://www.google.com/search?q={{{s}}}"},
            {"t": "gh", "d": "github.com", "u": "https://github.com/search?q={{{s}}}"},
            {"t": "ghr", "d": "github.com", "u": "https://github.com/{{{s}}}"},
        ]
    )
    + ";"
).encode()

INDEX_HTML = b"<!doctype html><title>unduck test</title>"


@dataclass
class Upstream:
    """Scripted upstream: answers with ``status``/``body`` and counts requests."""

    status: int = 200
    body: bytes = UPSTREAM_BODY
    requests: list[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, content=self.body)


@pytest.fixture()
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture()
def assets(tmp_path: Path) -> AssetSource:
    root = tmp_path / "assets"
    root.mkdir()
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "style.css").write_bytes(b"body { margin: 0; }")
    (tmp_path / "secret.txt").write_bytes(b"outside the asset root")
    return AssetSource(root)


@pytest.fixture()
async def edge_app(
    edge_cache: EdgeCache, upstream: Upstream, assets: AssetSource
) -> AsyncGenerator[Starlette, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as upstream_client:
        proxy = EdgeCacheProxy(
            edge_cache,
            upstream_client,
            upstream_url=UPSTREAM_URL,
            assets=assets,
            clock=lambda: FIXED_NOW,
        )
        app = Starlette(routes=EDGE_ROUTES)
        app.state.app_state = AppState(
            settings=Settings(),
            http_client=upstream_client,
            assets=assets,
            edge_cache=edge_cache,
            proxy=proxy,
        )
        yield app


@pytest.fixture()
async def edge_client(edge_app: Starlette) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=edge_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://edge.test") as client:
        yield client


@pytest.fixture()
async def search_app(
    edge_app: Starlette, store: PersistentDirectoryCache, assets: AssetSource
) -> AsyncGenerator[Starlette, None]:
    """Search frontend whose loader fetches through the edge app."""
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=edge_app)) as loader_client:
        loader = DirectoryLoader(loader_client, store, directory_url=EDGE_URL)
        app = Starlette(routes=SEARCH_ROUTES)
        app.state.app_state = AppState(
            settings=Settings(),
            http_client=loader_client,
            assets=assets,
            loader=loader,
            default_trigger="g",
        )
        yield app


@pytest.fixture()
async def search_client(search_app: Starlette) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=search_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://search.test") as client:
        yield client


@pytest.fixture()
def upstream_body() -> bytes:
    return UPSTREAM_BODY


@pytest.fixture()
def index_html() -> bytes:
    return INDEX_HTML


@pytest.fixture()
def fixed_now() -> datetime:
    return FIXED_NOW
