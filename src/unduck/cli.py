"""Command line entrypoint.

  unduck edge              serve the edge caching proxy
  unduck search            serve the search frontend
  unduck refresh           refresh the edge cache once (for cron/scheduled triggers)
  unduck resolve QUERY     print where a query would redirect
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from urllib.parse import urlencode

import aiosqlite
import structlog

from unduck import __version__
from unduck.config import Settings
from unduck.directory import build_directory
from unduck.edge_cache import EdgeCache
from unduck.fetcher import build_http_client
from unduck.loader import DirectoryLoader
from unduck.refresher import SUCCESS_OUTCOMES, RefreshOutcome, refresh_edge_cache
from unduck.resolver import resolve
from unduck.server import _setup_logging, run_edge_server, run_search_server
from unduck.store import PersistentDirectoryCache

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="unduck", description="Bang directory resolver")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    edge = sub.add_parser("edge", help="Serve the edge caching proxy")
    edge.add_argument("--port", type=int, help="Override server.edge_port")

    search = sub.add_parser("search", help="Serve the search frontend")
    search.add_argument("--port", type=int, help="Override server.search_port")

    sub.add_parser("refresh", help="Refresh the edge cache from upstream once")

    resolve_cmd = sub.add_parser("resolve", help="Print the destination for a query")
    resolve_cmd.add_argument("query", help='Search text, e.g. "!gh unduck"')

    return parser


async def run_refresh_once(settings: Settings) -> RefreshOutcome:
    db_path = Path(settings.edge.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with (
        aiosqlite.connect(str(db_path)) as db,
        build_http_client(settings.upstream.timeout_seconds) as client,
    ):
        cache = EdgeCache(db)
        await cache.init_db()
        return await refresh_edge_cache(
            cache,
            client,
            upstream_url=settings.upstream.url,
            script_global=settings.upstream.script_global,
        )


async def resolve_query(settings: Settings, query: str) -> str | None:
    """Resolve one query with the client loader. None means the default page."""
    async with build_http_client(settings.upstream.timeout_seconds) as client:
        loader = DirectoryLoader(
            client,
            PersistentDirectoryCache(
                Path(settings.client.store_dir).expanduser(),
                ttl_hours=settings.client.ttl_hours,
            ),
            directory_url=settings.client.directory_url,
            script_global=settings.upstream.script_global,
        )
        snapshot = await loader.load()

    directory = build_directory(snapshot, default_trigger=settings.client.default_trigger)
    resolution = resolve(urlencode({"q": query}), directory)
    return resolution.url


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()

    if args.command == "edge":
        if args.port is not None:
            settings.server.edge_port = args.port
        run_edge_server(settings)
        return 0

    if args.command == "search":
        if args.port is not None:
            settings.server.search_port = args.port
        run_search_server(settings)
        return 0

    _setup_logging(settings)

    if args.command == "refresh":
        outcome = asyncio.run(run_refresh_once(settings))
        log.info("refresh_finished", outcome=outcome)
        return 0 if outcome in SUCCESS_OUTCOMES else 1

    url = asyncio.run(resolve_query(settings, args.query))
    print(url if url is not None else "(default page)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
