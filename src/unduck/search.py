"""Search frontend: resolve ``?q=`` requests into redirects.

A request without a resolvable bang gets the index document, the same one
the edge serves at ``/``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from starlette.responses import HTMLResponse, RedirectResponse, Response
from starlette.routing import Route

from unduck.directory import build_directory
from unduck.proxy import INDEX_DOCUMENT
from unduck.resolver import resolve

if TYPE_CHECKING:
    from starlette.requests import Request

    from unduck.directory import DirectoryModel
    from unduck.state import AppState

log = structlog.get_logger()

_FALLBACK_PAGE = (
    "<!doctype html><html><head><meta charset='utf-8'><title>unduck</title></head>"
    "<body><h1>unduck</h1><p>Add <code>?q=%s</code> to use bangs, e.g. "
    "<code>!gh unduck</code>.</p></body></html>"
)


async def current_directory(state: AppState, *, force: bool = False) -> DirectoryModel:
    """Load the current snapshot and swap in a new DirectoryModel if it changed.

    ``force`` bypasses the freshness check and goes to the network, still
    through the loader's single-flight gate.
    """
    if state.loader is None:
        raise RuntimeError("Client components (loader) not initialized")

    snapshot = await state.loader.load(force=force)
    directory = state.directory
    if directory is None or directory.snapshot is not snapshot:
        directory = build_directory(snapshot, default_trigger=state.default_trigger)
        state.directory = directory
        log.info(
            "directory_published",
            entries=len(directory),
            content_hash=snapshot.stamp.content_hash,
        )
    return directory


def render_default_page(state: AppState) -> Response:
    content = state.assets.read(INDEX_DOCUMENT) if state.assets is not None else None
    if content is None:
        return HTMLResponse(_FALLBACK_PAGE)
    return HTMLResponse(content)


async def search_endpoint(request: Request) -> Response:
    state: AppState = request.app.state.app_state
    directory = await current_directory(state)

    # Decoded leniently; the raw query may carry non-UTF-8 bytes.
    query_string = request.scope.get("query_string", b"").decode("utf-8", "replace")
    resolution = resolve(query_string, directory)
    if resolution.action == "redirect" and resolution.url is not None:
        log.debug("search_redirect", url=resolution.url)
        return RedirectResponse(resolution.url, status_code=302)
    return render_default_page(state)


SEARCH_ROUTES = [
    Route("/", search_endpoint, methods=["GET"]),
    Route("/search", search_endpoint, methods=["GET"]),
]
