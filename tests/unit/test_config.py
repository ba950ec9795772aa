"""Unit tests for the configuration module."""

import os
from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from selfupdater.config import (
    UpdateSettings,
    default_cache_dir,
    default_state_dir,
    get_settings,
)

posix_only = pytest.mark.skipif(os.name == "nt", reason="XDG directories")

REQUIRED_ENV = {
    "SELFUPDATER_CURRENT_VERSION": "1.2.3",
    "SELFUPDATER_UPDATE_URL": "https://example.com/latest.json",
}


@pytest.fixture()
def env(monkeypatch):
    """Set the required variables and return monkeypatch for extras."""
    for key, value in REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)
    return monkeypatch


class TestUpdateSettings:
    """Tests for UpdateSettings loading and validation."""

    def test_loads_from_environment(self, env) -> None:
        settings = UpdateSettings(_env_file=None)
        assert settings.current_version == "1.2.3"
        assert settings.update_url == "https://example.com/latest.json"

    def test_defaults(self, env) -> None:
        settings = UpdateSettings(_env_file=None)
        assert settings.check_interval == timedelta(hours=24)
        assert settings.auto_update is False
        assert settings.require_confirmation is True
        assert settings.allow_prerelease is False
        assert settings.http_timeout == 30.0
        assert settings.state_dir is None
        assert settings.cache_dir is None
        assert settings.log_level == "WARNING"

    def test_overrides_from_environment(self, env) -> None:
        env.setenv("SELFUPDATER_CHECK_INTERVAL", "PT1H")
        env.setenv("SELFUPDATER_ALLOW_PRERELEASE", "true")
        env.setenv("SELFUPDATER_STATE_DIR", "/tmp/state")
        settings = UpdateSettings(_env_file=None)
        assert settings.check_interval == timedelta(hours=1)
        assert settings.allow_prerelease is True
        assert settings.state_dir == Path("/tmp/state")

    def test_missing_update_url(self, monkeypatch) -> None:
        monkeypatch.setenv("SELFUPDATER_CURRENT_VERSION", "1.0.0")
        monkeypatch.delenv("SELFUPDATER_UPDATE_URL", raising=False)
        with pytest.raises(ValidationError):
            UpdateSettings(_env_file=None)

    def test_empty_update_url(self, env) -> None:
        env.setenv("SELFUPDATER_UPDATE_URL", "")
        with pytest.raises(ValidationError):
            UpdateSettings(_env_file=None)

    def test_non_positive_timeout(self, env) -> None:
        env.setenv("SELFUPDATER_HTTP_TIMEOUT", "0")
        with pytest.raises(ValidationError):
            UpdateSettings(_env_file=None)

    def test_is_development(self, env) -> None:
        env.setenv("SELFUPDATER_ENVIRONMENT", "Development")
        assert UpdateSettings(_env_file=None).is_development
        env.setenv("SELFUPDATER_ENVIRONMENT", "production")
        assert not UpdateSettings(_env_file=None).is_development


class TestDefaultDirs:
    """Tests for per-user directory defaults."""

    @posix_only
    def test_with_default_dirs_fills_missing(self, env, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
        monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))

        settings = UpdateSettings(_env_file=None, app_name="mycli").with_default_dirs()

        assert settings.state_dir == tmp_path / "state" / "mycli"
        assert settings.cache_dir == tmp_path / "cache" / "mycli"

    def test_with_default_dirs_keeps_explicit(self, env, tmp_path) -> None:
        settings = UpdateSettings(
            _env_file=None, state_dir=tmp_path / "s", cache_dir=tmp_path / "c"
        ).with_default_dirs()
        assert settings.state_dir == tmp_path / "s"
        assert settings.cache_dir == tmp_path / "c"

    @posix_only
    def test_posix_fallbacks(self, monkeypatch) -> None:
        monkeypatch.delenv("XDG_STATE_HOME", raising=False)
        monkeypatch.delenv("XDG_CACHE_HOME", raising=False)

        assert default_state_dir("mycli") == Path.home() / ".local" / "state" / "mycli"
        assert default_cache_dir("mycli") == Path.home() / ".cache" / "mycli"

    @pytest.mark.skipif(os.name != "nt", reason="Windows only")
    def test_windows_uses_local_app_data(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("LOCALAPPDATA", str(tmp_path))

        assert default_state_dir("mycli") == tmp_path / "mycli"
        assert default_cache_dir("mycli") == tmp_path / "mycli" / "updates"


class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_cached(self, env) -> None:
        assert get_settings() is get_settings()
