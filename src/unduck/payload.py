"""Directory payload parsing and fingerprinting.

Upstream serves either a raw JSON array of bang entries or a script that
assigns that array to a global (``window.bangs = [...]``). Script payloads are
never executed: the assigned array literal is located textually, cut out by
bracket matching and handed to the JSON parser. Anything else in the script is
ignored.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

import structlog
from pydantic import ValidationError

from unduck.errors import ErrorCode, UnduckError
from unduck.models.directory import BangEntry

log = structlog.get_logger()

_QUOTES = frozenset({'"', "'", "`"})


def content_hash(payload: bytes) -> str:
    """Hex SHA-256 of the raw payload bytes. Used as ETag and change detector."""
    return hashlib.sha256(payload).hexdigest()


def _unparseable(message: str) -> UnduckError:
    return UnduckError(
        code=ErrorCode.PAYLOAD_UNPARSEABLE,
        message=message,
        suggestion="The directory source returned an unexpected format.",
        recoverable=False,
    )


def _assignment_pattern(global_name: str) -> re.Pattern[str]:
    # Matches `bangs = [`, `var bangs=[`, `window.bangs = [`, `globalThis.bangs = [`
    # but not `foo.bangs = [` or `bangs == [`.
    return re.compile(
        r"(?<![\w$.])(?:(?:window|globalThis|self)\.)?"
        + re.escape(global_name)
        + r"\s*=(?!=)\s*(?=\[)"
    )


def _match_array(text: str, start: int) -> int:
    """Return the index of the ``]`` closing the array opened at ``start``.

    String literals are skipped so brackets inside them do not count.
    Raises UnduckError if the literal is never closed.
    """
    depth = 0
    quote: str | None = None
    escaped = False

    for idx in range(start, len(text)):
        char = text[idx]

        if quote is not None:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue

        if char in _QUOTES:
            quote = char
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return idx

    raise _unparseable("Unterminated array literal in directory script")


def extract_script_array(script: str, global_name: str) -> str:
    """Isolate the array literal assigned to ``global_name`` in a script."""
    match = _assignment_pattern(global_name).search(script)
    if match is None:
        raise _unparseable(f"No assignment to '{global_name}' found in directory script")
    start = match.end()
    end = _match_array(script, start)
    return script[start : end + 1]


def _decode(payload: bytes | str) -> str:
    if isinstance(payload, str):
        return payload
    try:
        return payload.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise _unparseable("Directory payload is not valid UTF-8") from exc


def parse_directory_payload(
    payload: bytes | str,
    *,
    global_name: str = "bangs",
) -> list[BangEntry]:
    """Parse a directory payload into entries, preserving source order.

    Entries that fail validation are skipped. Raises UnduckError with
    PAYLOAD_UNPARSEABLE when the payload is neither a JSON array nor a script
    assigning one, or when a non-empty array yields no valid entry.
    """
    text = _decode(payload).strip()

    array_text = text if text.startswith("[") else extract_script_array(text, global_name)

    try:
        raw: Any = json.loads(array_text)
    except ValueError as exc:
        raise _unparseable(f"Directory payload is not valid JSON: {exc}") from exc

    if not isinstance(raw, list):
        raise _unparseable(f"Directory payload must be an array, got {type(raw).__name__}")

    entries: list[BangEntry] = []
    skipped = 0
    for item in raw:
        try:
            entries.append(BangEntry.model_validate(item))
        except ValidationError:
            skipped += 1

    if skipped:
        log.info("directory_entries_skipped", skipped=skipped, kept=len(entries))
    if raw and not entries:
        raise _unparseable("Directory payload contained no valid entries")

    return entries
