"""Bang resolution algorithm.

Pure business logic: receives a raw query string and a DirectoryModel,
returns a Resolution. No knowledge of AppState, HTTP, or storage. Never
raises: anything that cannot be resolved becomes ``show_default``.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, quote

from unduck.models.directory import PLACEHOLDER
from unduck.models.resolution import Resolution

if TYPE_CHECKING:
    from unduck.directory import DirectoryModel
    from unduck.models.directory import BangEntry

_BANG_RE = re.compile(r"!(\S+)", re.IGNORECASE)
_BANG_TOKEN_RE = re.compile(r"!\S+\s*", re.IGNORECASE)

# Characters encodeURIComponent leaves alone beyond quote()'s always-safe set.
_URI_COMPONENT_SAFE = "!*'()"

SHOW_DEFAULT = Resolution(action="show_default")


def extract_query(raw_query_string: str) -> str:
    """Return the trimmed ``q`` parameter of a query string ("" if absent)."""
    values = parse_qs(raw_query_string.removeprefix("?"), keep_blank_values=True).get("q")
    if not values:
        return ""
    return values[0].strip()


def find_trigger(query: str) -> str | None:
    """Lowercased trigger of the first ``!token`` in the query, or None."""
    match = _BANG_RE.search(query)
    if match is None:
        return None
    return match.group(1).lower()


def strip_bang(query: str) -> str:
    """Remove the first bang token and the whitespace run after it."""
    return _BANG_TOKEN_RE.sub("", query, count=1).strip()


def build_destination(entry: BangEntry, search_text: str) -> str:
    """Substitute the encoded search text into the entry's URL template.

    Empty search text, or a template without exactly one placeholder, sends
    the user to the bare domain.
    """
    if not search_text or not entry.has_placeholder:
        return f"https://{entry.domain}"

    # Encoded slashes are restored so path-segment templates stay navigable.
    encoded = quote(search_text, safe=_URI_COMPONENT_SAFE).replace("%2F", "/")
    return entry.url_template.replace(PLACEHOLDER, encoded)


def resolve(raw_query_string: str, directory: DirectoryModel) -> Resolution:
    """Resolve a search request to a redirect or the default page.

    Steps:
      1. Extract and trim ``q``; empty → show_default
      2. Find the first bang token; none → show_default
      3. Exact trigger, else default trigger entry, else first entry;
         empty directory → show_default
      4. Strip the bang token to get the search text
      5. Build the destination URL
    """
    # Step 1
    query = extract_query(raw_query_string)
    if not query:
        return SHOW_DEFAULT

    # Step 2
    trigger = find_trigger(query)
    if trigger is None:
        return SHOW_DEFAULT

    # Step 3
    entry = directory.lookup(trigger)
    if entry is None:
        entry = directory.default()
    if entry is None:
        return SHOW_DEFAULT

    # Steps 4-5
    search_text = strip_bang(query)
    return Resolution(action="redirect", url=build_destination(entry, search_text))
