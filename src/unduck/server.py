"""ASGI app factories and runners.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the Starlette lifespan context manager
- Start background schedulers
- Run the edge proxy or the search frontend under uvicorn
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
import uvicorn
from starlette.applications import Starlette

from unduck import __version__
from unduck.config import Settings
from unduck.edge_cache import EdgeCache
from unduck.fetcher import build_http_client
from unduck.loader import DirectoryLoader
from unduck.proxy import EDGE_ROUTES, AssetSource, EdgeCacheProxy
from unduck.schedulers import run_client_refresh_scheduler, run_edge_refresh_scheduler
from unduck.search import SEARCH_ROUTES, current_directory
from unduck.state import AppState
from unduck.store import PersistentDirectoryCache

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr; stdout is reserved for CLI output
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespans
# ---------------------------------------------------------------------------

FIRST_LOAD_TIMEOUT_SECONDS = 5.0


async def _cancel(task: asyncio.Task | None) -> None:
    if task is None:
        return
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


@asynccontextmanager
async def edge_state(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Create and tear down the edge proxy's resources."""
    http_client = build_http_client(settings.upstream.timeout_seconds)

    db_path = Path(settings.edge.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    edge_cache = EdgeCache(db)
    await edge_cache.init_db()

    assets = AssetSource(Path(settings.edge.assets_dir).expanduser())
    proxy = EdgeCacheProxy(
        edge_cache,
        http_client,
        upstream_url=settings.upstream.url,
        assets=assets,
        max_age_seconds=settings.edge.max_age_seconds,
    )
    state = AppState(
        settings=settings,
        http_client=http_client,
        assets=assets,
        edge_cache=edge_cache,
        proxy=proxy,
    )

    refresh_task: asyncio.Task | None = None
    if settings.edge.refresh_interval_hours > 0:
        refresh_task = asyncio.create_task(run_edge_refresh_scheduler(state))

    log.info(
        "edge_started",
        version=__version__,
        upstream_url=settings.upstream.url,
        db_path=str(db_path),
        scheduled_refresh=refresh_task is not None,
    )

    try:
        yield state
    finally:
        await _cancel(refresh_task)
        await http_client.aclose()
        await db.close()
        log.info("edge_stopping")


async def _warm_directory(state: AppState) -> bool:
    """Publish a directory before serving, bounded by FIRST_LOAD_TIMEOUT_SECONDS.

    On timeout the fetch keeps running in the loader; the first request joins it.
    """
    try:
        directory = await asyncio.wait_for(
            current_directory(state), timeout=FIRST_LOAD_TIMEOUT_SECONDS
        )
        log.info("first_load_complete", entries=len(directory))
        return True
    except TimeoutError:
        log.warning("first_load_timeout", timeout=FIRST_LOAD_TIMEOUT_SECONDS)
        return False


@asynccontextmanager
async def search_state(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Create and tear down the search frontend's resources."""
    http_client = build_http_client(settings.upstream.timeout_seconds)
    store = PersistentDirectoryCache(
        Path(settings.client.store_dir).expanduser(),
        ttl_hours=settings.client.ttl_hours,
    )
    loader = DirectoryLoader(
        http_client,
        store,
        directory_url=settings.client.directory_url,
        script_global=settings.upstream.script_global,
    )
    state = AppState(
        settings=settings,
        http_client=http_client,
        assets=AssetSource(Path(settings.edge.assets_dir).expanduser()),
        loader=loader,
        default_trigger=settings.client.default_trigger,
    )

    await _warm_directory(state)

    refresh_task: asyncio.Task | None = None
    if settings.client.refresh_interval_hours > 0:
        refresh_task = asyncio.create_task(run_client_refresh_scheduler(state))

    log.info(
        "search_started",
        version=__version__,
        directory_url=settings.client.directory_url,
        default_trigger=state.default_trigger,
    )

    try:
        yield state
    finally:
        await _cancel(refresh_task)
        await http_client.aclose()
        log.info("search_stopping")


# ---------------------------------------------------------------------------
# App factories
# ---------------------------------------------------------------------------


def create_edge_app(settings: Settings) -> Starlette:
    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        async with edge_state(settings) as state:
            app.state.app_state = state
            yield

    return Starlette(routes=EDGE_ROUTES, lifespan=lifespan)


def create_search_app(settings: Settings) -> Starlette:
    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        async with search_state(settings) as state:
            app.state.app_state = state
            yield

    return Starlette(routes=SEARCH_ROUTES, lifespan=lifespan)


def run_edge_server(settings: Settings) -> None:
    """Start the edge proxy."""
    _setup_logging(settings)
    uvicorn.run(
        create_edge_app(settings),
        host=settings.server.host,
        port=settings.server.edge_port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )


def run_search_server(settings: Settings) -> None:
    """Start the search frontend."""
    _setup_logging(settings)
    uvicorn.run(
        create_search_app(settings),
        host=settings.server.host,
        port=settings.server.search_port,
        log_config=None,
    )
