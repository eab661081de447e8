"""In-memory bang directory.

Built once per snapshot and swapped wholesale on refresh; never mutated.
No I/O.
"""

from __future__ import annotations

import functools
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime

from unduck.models.directory import BangEntry, DirectorySnapshot, VersionStamp
from unduck.payload import content_hash

# Last-resort directory used when neither the network nor the store can
# provide one. Must cover the default trigger.
EMBEDDED_ENTRIES: tuple[BangEntry, ...] = (
    BangEntry(
        trigger="g",
        domain="www.google.com",
        url_template="https://www.google.com/search?q={{{s}}}",
        display_name="Google",
    ),
    BangEntry(
        trigger="ddg",
        domain="duckduckgo.com",
        url_template="https://duckduckgo.com/?q={{{s}}}",
        display_name="DuckDuckGo",
    ),
)

_EMBEDDED_TIMESTAMP = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class DirectoryModel:
    """Trigger index over exactly one DirectorySnapshot."""

    snapshot: DirectorySnapshot
    default_trigger: str = "g"

    # trigger → entry, last writer wins on duplicate triggers
    by_trigger: dict[str, BangEntry] = field(default_factory=dict)

    def lookup(self, trigger: str) -> BangEntry | None:
        return self.by_trigger.get(trigger)

    def default(self) -> BangEntry | None:
        """Entry for the configured default trigger, else the first entry."""
        entry = self.by_trigger.get(self.default_trigger)
        if entry is not None:
            return entry
        if self.snapshot.entries:
            return self.snapshot.entries[0]
        return None

    def __len__(self) -> int:
        return len(self.by_trigger)


def build_directory(snapshot: DirectorySnapshot, *, default_trigger: str = "g") -> DirectoryModel:
    """Index a snapshot by trigger in a single pass over its entries."""
    by_trigger: dict[str, BangEntry] = {}
    for entry in snapshot.entries:
        by_trigger[entry.trigger] = entry
    return DirectoryModel(
        snapshot=snapshot,
        default_trigger=default_trigger,
        by_trigger=by_trigger,
    )


def serialise_entries(entries: tuple[BangEntry, ...] | list[BangEntry]) -> bytes:
    """Encode entries as a JSON array using the upstream wire keys."""
    raw = [entry.model_dump(by_alias=True, exclude_none=True) for entry in entries]
    return json.dumps(raw, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


@functools.cache
def embedded_snapshot() -> DirectorySnapshot:
    """The embedded directory as one shared snapshot; identity is stable across calls."""
    return DirectorySnapshot(
        entries=EMBEDDED_ENTRIES,
        stamp=VersionStamp(
            timestamp=_EMBEDDED_TIMESTAMP,
            content_hash=content_hash(serialise_entries(EMBEDDED_ENTRIES)),
        ),
    )
