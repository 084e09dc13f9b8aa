"""Unit tests for configuration defaults and overrides."""

from __future__ import annotations

import platformdirs
import pytest

from sourcereg.config import (
    _DEFAULT_DATA_DIR,
    _DEFAULT_DB_PATH,
    DEFAULT_USER_AGENT,
    Settings,
    StoreSettings,
)


class TestPlatformDefaults:
    def test_default_data_dir_matches_platformdirs(self) -> None:
        assert platformdirs.user_data_dir("sourcereg") == _DEFAULT_DATA_DIR

    def test_default_db_path_under_data_dir(self) -> None:
        assert _DEFAULT_DB_PATH.startswith(_DEFAULT_DATA_DIR)
        assert _DEFAULT_DB_PATH.endswith("registry.db")

    def test_store_settings_uses_platform_default(self) -> None:
        assert StoreSettings().db_path == _DEFAULT_DB_PATH


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.fetcher.user_agent == DEFAULT_USER_AGENT
        assert settings.fetcher.retries == 3
        assert settings.fetcher.default_rate_per_minute == 30
        assert settings.retrieval.max_concurrent == 2
        assert settings.registry.skip_scanned is False
        assert settings.logging.format == "json"

    def test_env_override_nested(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SOURCEREG__FETCHER__TIMEOUT_SECONDS", "10")
        monkeypatch.setenv("SOURCEREG__REGISTRY__SKIP_SCANNED", "true")
        settings = Settings()
        assert settings.fetcher.timeout_seconds == 10.0
        assert settings.registry.skip_scanned is True

    def test_constructor_args_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SOURCEREG__LOGGING__LEVEL", "DEBUG")
        settings = Settings(logging={"level": "ERROR"})
        assert settings.logging.level == "ERROR"
