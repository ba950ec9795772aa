"""Configuration management for selfupdater."""

import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from selfupdater.constants import DEFAULT_CHECK_INTERVAL, DEFAULT_HTTP_TIMEOUT


class UpdateSettings(BaseSettings):
    """Update settings loaded from ``SELFUPDATER_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SELFUPDATER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Release source
    current_version: str = Field(description="Version of the running binary")
    update_url: str = Field(min_length=1, description="URL of the release manifest")

    # Policy
    check_interval: timedelta = Field(
        default=DEFAULT_CHECK_INTERVAL, description="Minimum time between background checks"
    )
    auto_update: bool = Field(default=False, description="Reserved: install without asking")
    require_confirmation: bool = Field(
        default=True, description="Ask before installing an update"
    )
    allow_prerelease: bool = Field(default=False, description="Offer prerelease versions")
    http_timeout: float = Field(
        default=DEFAULT_HTTP_TIMEOUT, gt=0, description="HTTP timeout in seconds"
    )

    # Storage
    state_dir: Path | None = Field(default=None, description="Directory for last_check.json")
    cache_dir: Path | None = Field(default=None, description="Directory for downloaded payloads")

    # Application
    app_name: str = Field(default="selfupdater", description="Name shown to users")
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="WARNING", description="Logging level")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    def with_default_dirs(self) -> "UpdateSettings":
        """Return a copy with per-user state/cache directories filled in."""
        return self.model_copy(
            update={
                "state_dir": self.state_dir or default_state_dir(self.app_name),
                "cache_dir": self.cache_dir or default_cache_dir(self.app_name),
            }
        )


def _user_base(env_var: str, fallback: Path) -> Path:
    if os.name == "nt":
        local = os.environ.get("LOCALAPPDATA")
        if local:
            return Path(local)
    value = os.environ.get(env_var)
    return Path(value) if value else fallback


def default_state_dir(app_name: str) -> Path:
    """Per-user directory for persisted update state."""
    return _user_base("XDG_STATE_HOME", Path.home() / ".local" / "state") / app_name


def default_cache_dir(app_name: str) -> Path:
    """Per-user directory for downloaded update payloads."""
    base = _user_base("XDG_CACHE_HOME", Path.home() / ".cache") / app_name
    return base / "updates" if os.name == "nt" else base


@lru_cache
def get_settings() -> UpdateSettings:
    """Get cached settings instance."""
    return UpdateSettings()  # type: ignore[call-arg]
