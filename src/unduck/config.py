"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (UNDUCK__CLIENT__DEFAULT_TRIGGER=ddg)
  2. unduck.yaml            (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; all fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("unduck")
_DEFAULT_EDGE_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "edge-cache.db")
_DEFAULT_STORE_DIR = str(Path(_DEFAULT_DATA_DIR) / "directory")
_DEFAULT_ASSETS_DIR = str(Path(__file__).parent / "assets")


def _find_config_file() -> str | None:
    """Return the path of the first unduck.yaml found, or None."""
    candidates = [
        Path("unduck.yaml"),
        Path(platformdirs.user_config_dir("unduck")) / "unduck.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    edge_port: int = 8787
    search_port: int = 8080


class UpstreamSettings(BaseModel):
    url: str = "https://duckduckgo.com/bang.js"
    # Global name assigned by script-form payloads: ``bangs = [...]``
    script_global: str = "bangs"
    timeout_seconds: float = 30.0


class EdgeSettings(BaseModel):
    db_path: str = _DEFAULT_EDGE_DB_PATH
    assets_dir: str = _DEFAULT_ASSETS_DIR
    max_age_seconds: int = 86400
    # 0 disables the in-process loop; use `unduck refresh` from cron instead.
    refresh_interval_hours: float = 24


class ClientSettings(BaseModel):
    directory_url: str = "http://127.0.0.1:8787/bangs.js"
    store_dir: str = _DEFAULT_STORE_DIR
    ttl_hours: float = 24
    refresh_interval_hours: float = 1
    default_trigger: str = "g"


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: UNDUCK__SERVER__EDGE_PORT=9090
        env_prefix="UNDUCK__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    upstream: UpstreamSettings = UpstreamSettings()
    edge: EdgeSettings = EdgeSettings()
    client: ClientSettings = ClientSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
