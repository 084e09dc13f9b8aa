"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (SOURCEREG__FETCHER__TIMEOUT_SECONDS=10)
  2. sourcereg.yaml         (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; every field has a default.
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

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("sourcereg")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "registry.db")

DEFAULT_USER_AGENT = "SourceRegBot/1.0 (+https://github.com/sourcereg/sourcereg)"


def _find_config_file() -> str | None:
    """Return the path of the first sourcereg.yaml found, or None."""
    candidates = [
        Path("sourcereg.yaml"),
        Path(platformdirs.user_config_dir("sourcereg")) / "sourcereg.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class FetcherSettings(BaseModel):
    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = 30.0
    retries: int = 3
    retry_delay_ms: int = 1000
    default_rate_per_minute: int = 30
    robots_timeout_seconds: float = 10.0
    robots_cache_ttl_seconds: int = 3600
    max_connections: int = 10


class StoreSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH
    node_batch_size: int = 100


class RegistrySettings(BaseModel):
    skip_scanned: bool = False
    # Activate assets in the scan pass once robots and TOC extraction allow it
    auto_activate: bool = False


class DiscoverySettings(BaseModel):
    catalog_ttl_seconds: int = 3600
    min_match_score: float = 10.0
    docs_rate_per_minute: int = 10
    web_search_url: str = "https://html.duckduckgo.com/html/"
    web_search_max_results: int = 10
    max_basic_nodes: int = 50


class RetrievalSettings(BaseModel):
    max_concurrent: int = 2
    batch_delay_ms: int = 500
    min_paragraph_chars: int = 20


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: SOURCEREG__STORE__DB_PATH=/tmp/r.db
        env_prefix="SOURCEREG__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    fetcher: FetcherSettings = FetcherSettings()
    store: StoreSettings = StoreSettings()
    registry: RegistrySettings = RegistrySettings()
    discovery: DiscoverySettings = DiscoverySettings()
    retrieval: RetrievalSettings = RetrievalSettings()
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
