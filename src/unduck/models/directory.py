from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

PLACEHOLDER = "{{{s}}}"


class BangEntry(BaseModel):
    """Single entry in the bang directory.

    Field aliases are the upstream wire keys (``t``, ``d``, ``u`` ...). Both
    the wire keys and the field names are accepted on input.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    trigger: str = Field(alias="t", min_length=1)
    domain: str = Field(alias="d", min_length=1)
    url_template: str = Field(alias="u", min_length=1)
    category: str | None = Field(default=None, alias="c")
    subcategory: str | None = Field(default=None, alias="sc")
    rank: int | None = Field(default=None, alias="r")
    display_name: str | None = Field(default=None, alias="s")

    @property
    def has_placeholder(self) -> bool:
        """True when the template holds exactly one search placeholder."""
        return self.url_template.count(PLACEHOLDER) == 1


class VersionStamp(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    content_hash: str  # hex SHA-256 of the raw payload bytes


class DirectorySnapshot(BaseModel):
    """Immutable, versioned instance of the directory. Entries keep source order."""

    model_config = ConfigDict(frozen=True)

    entries: tuple[BangEntry, ...]
    stamp: VersionStamp


class CacheRecord(BaseModel):
    """What the persistent client store holds: one snapshot and its stamp."""

    model_config = ConfigDict(frozen=True)

    snapshot: DirectorySnapshot

    @property
    def stamp(self) -> VersionStamp:
        return self.snapshot.stamp
