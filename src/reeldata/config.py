"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments
  2. Environment variables  (REELDATA__BACKEND__URL=https://db.example.com)
  3. reeldata.yaml          (searched in cwd, then platform config dir)
  4. Hardcoded defaults

The config file is optional. Only ``backend.url`` and ``backend.api_key``
normally need to be set.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


def _find_config_file() -> str | None:
    """Return the path of the first reeldata.yaml found, or None."""
    candidates = [
        Path("reeldata.yaml"),
        Path(platformdirs.user_config_dir("reeldata")) / "reeldata.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class BackendSettings(BaseModel):
    url: str = "http://localhost:54321"
    api_key: str = ""
    timeout_seconds: float = Field(default=15.0, gt=0)
    max_connections: int = Field(default=10, ge=1)


class CacheSettings(BaseModel):
    max_entries: int = Field(default=512, ge=1)
    max_cost: int = Field(default=50_000, ge=1)
    shards: int = Field(default=16, ge=1)
    # 0 disables the background sweep; expiry is still enforced lazily on read.
    sweep_interval_seconds: int = Field(default=0, ge=0)
    # operation name -> TTL in seconds, replacing the built-in table value
    ttl_overrides: dict[str, int] = {}


class PaginationSettings(BaseModel):
    page_size: int = Field(default=50, ge=1)


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: REELDATA__CACHE__MAX_ENTRIES=1024
        env_prefix="REELDATA__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    backend: BackendSettings = BackendSettings()
    cache: CacheSettings = CacheSettings()
    pagination: PaginationSettings = PaginationSettings()
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
        )
