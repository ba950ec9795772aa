"""Self-update pipeline for command-line binaries.

Checks a release manifest endpoint, downloads and verifies the payload,
and swaps it in for the running executable with backup and rollback.
"""

from selfupdater.updater.auto import AutoUpdater
from selfupdater.updater.checker import UpdateChecker
from selfupdater.updater.downloader import UpdateDownloader, verify_checksum
from selfupdater.updater.errors import (
    ChecksumError,
    ConfigurationError,
    FetchError,
    InstallError,
    ManifestError,
    ParseError,
    StateError,
    UnsupportedAlgorithmError,
    UpdateError,
)
from selfupdater.updater.installer import (
    Installer,
    PosixReplace,
    WindowsReplace,
    get_executable_path,
)
from selfupdater.updater.models import (
    CheckResult,
    CheckStatus,
    DownloadProgress,
    LastCheckInfo,
    ReleaseInfo,
)
from selfupdater.updater.version import Version, parse_version

__all__ = [
    "AutoUpdater",
    "CheckResult",
    "CheckStatus",
    "ChecksumError",
    "ConfigurationError",
    "DownloadProgress",
    "FetchError",
    "InstallError",
    "Installer",
    "LastCheckInfo",
    "ManifestError",
    "ParseError",
    "PosixReplace",
    "ReleaseInfo",
    "StateError",
    "UnsupportedAlgorithmError",
    "UpdateChecker",
    "UpdateDownloader",
    "UpdateError",
    "Version",
    "WindowsReplace",
    "get_executable_path",
    "parse_version",
    "verify_checksum",
]
