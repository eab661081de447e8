from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class Resolution(BaseModel):
    """Outcome of resolving one search query."""

    model_config = ConfigDict(frozen=True)

    action: Literal["redirect", "show_default"]
    url: str | None = None  # Set only when action == "redirect"
