"""Data models for release manifests, check results and persisted state.

``ReleaseInfo`` is the wire manifest returned by the update server and is a
pydantic model. The rest are plain dataclasses with to_dict/from_dict where
they are serialised.
"""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from selfupdater.constants import DEFAULT_CHECKSUM_ALGO
from selfupdater.updater.errors import ManifestError
from selfupdater.updater.version import Version

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ChecksumAlgorithm(StrEnum):
    """Digest algorithms accepted for payload verification."""

    SHA256 = "sha256"
    SHA512 = "sha512"


class CheckStatus(StrEnum):
    """Outcome of an update check."""

    UP_TO_DATE = "up-to-date"
    AVAILABLE = "available"


# ---------------------------------------------------------------------------
# Release manifest
# ---------------------------------------------------------------------------

_OS_NAMES = {"win32": "windows", "cygwin": "windows", "darwin": "darwin"}
_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
}


def current_platform_key() -> str:
    """Return the ``<os>-<arch>`` key used in manifest platform maps."""
    os_name = _OS_NAMES.get(sys.platform, sys.platform.rstrip("0123456789"))
    machine = platform.machine().lower()
    return f"{os_name}-{_ARCH_NAMES.get(machine, machine)}"


class ReleaseInfo(BaseModel):
    """Latest-release manifest served by the update endpoint."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    version: str = Field(description="Semantic version of the release")
    url: str = Field(default="", description="Default payload URL")
    checksum: str = Field(default="", description="Hex digest of the payload")
    checksum_algo: str = Field(default=DEFAULT_CHECKSUM_ALGO, description="sha256 or sha512")
    size: int | None = Field(default=None, ge=0, description="Payload size in bytes")
    release_date: datetime | None = Field(default=None, description="Publication time")
    changelog: str = Field(default="", description="Human-readable release notes")
    critical: bool = Field(default=False, description="Strongly recommended update")
    platform: dict[str, str] = Field(
        default_factory=dict, description="Platform key -> payload URL"
    )

    @field_validator("checksum_algo", mode="before")
    @classmethod
    def default_checksum_algo(cls, v: Any) -> Any:
        """An absent or empty algorithm means sha256."""
        if v is None or v == "":
            return DEFAULT_CHECKSUM_ALGO
        return v

    @classmethod
    def from_json(cls, raw: str | bytes) -> ReleaseInfo:
        """Parse a manifest body.

        Raises:
            ManifestError: If the body is not valid JSON or does not match
                the manifest schema.
        """
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise ManifestError(f"failed to parse release info: {exc}") from exc

    def download_url(self, platform_key: str | None = None) -> str:
        """Return the payload URL for *platform_key*, falling back to ``url``."""
        key = platform_key or current_platform_key()
        return self.platform.get(key) or self.url


# ---------------------------------------------------------------------------
# Check result
# ---------------------------------------------------------------------------


@dataclass
class CheckResult:
    """Result of comparing the running version against the manifest.

    ``warnings`` holds non-fatal caveats, such as state that could not be
    persisted; a check with warnings still succeeded.
    """

    status: CheckStatus
    current_version: Version
    latest_version: Version | None = None
    release: ReleaseInfo | None = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    warnings: list[str] = field(default_factory=list)

    @property
    def update_available(self) -> bool:
        return (
            self.status is CheckStatus.AVAILABLE
            and self.latest_version is not None
            and self.latest_version.is_newer(self.current_version)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "current_version": str(self.current_version),
            "latest_version": str(self.latest_version) if self.latest_version else None,
            "update_available": self.update_available,
            "critical": bool(self.release and self.release.critical),
            "checked_at": self.checked_at.isoformat(),
            "warnings": list(self.warnings),
        }


# ---------------------------------------------------------------------------
# Download progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DownloadProgress:
    """Snapshot of a transfer, recomputed after every chunk."""

    bytes_downloaded: int
    total_bytes: int
    percentage: float
    bytes_per_second: int
    eta: timedelta = timedelta(0)

    @property
    def is_complete(self) -> bool:
        return self.total_bytes > 0 and self.bytes_downloaded >= self.total_bytes


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    ts = datetime.fromisoformat(str(value))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    # Year 1 is how a zero timestamp is written by other implementations
    if ts.year <= 1:
        return None
    return ts


@dataclass
class LastCheckInfo:
    """State stored in ``last_check.json`` between invocations."""

    checked_at: datetime | None = None
    latest_version: str = ""
    update_skipped: bool = False
    skipped_version: str = ""
    skipped_at: datetime | None = None

    def should_check(self, interval: timedelta, now: datetime | None = None) -> bool:
        """Return True if *interval* has elapsed since the last check."""
        if self.checked_at is None:
            return True
        now = now or datetime.now(UTC)
        return now - self.checked_at >= interval

    def clear_skip(self) -> None:
        self.update_skipped = False
        self.skipped_version = ""
        self.skipped_at = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
            "latest_version": self.latest_version,
        }
        if self.update_skipped:
            data["update_skipped"] = True
            data["skipped_version"] = self.skipped_version
            data["skipped_at"] = self.skipped_at.isoformat() if self.skipped_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LastCheckInfo:
        """Build from stored JSON.

        Raises:
            ValueError: If a timestamp is not ISO-8601.
        """
        return cls(
            checked_at=_parse_timestamp(data.get("checked_at")),
            latest_version=str(data.get("latest_version") or ""),
            update_skipped=bool(data.get("update_skipped", False)),
            skipped_version=str(data.get("skipped_version") or ""),
            skipped_at=_parse_timestamp(data.get("skipped_at")),
        )
